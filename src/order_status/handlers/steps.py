"""Step derivation for the five-stage order pipeline.

`derive_steps` is a pure function of the current stage and the stage URL
bindings. Unknown stage values are treated as index -1, so every step is
pending and no step exposes a URL.
"""

from typing import Mapping, Optional

from ..schemas import Stage, StepView

STAGE_LABELS = {
    Stage.UPLOAD_PHOTO: "Upload photo",
    Stage.IN_PROGRESS: "In progress",
    Stage.CHECK_DELIVERY: "Check delivery",
    Stage.CHECK_REVISION: "Check revision",
    Stage.ORDER_COMPLETE: "Order complete",
}

CLICKABLE_STAGES = frozenset({Stage.UPLOAD_PHOTO, Stage.CHECK_DELIVERY, Stage.CHECK_REVISION})

_ORDER = list(Stage)


def stage_index(value: Optional[str]) -> int:
    """Position of `value` in the pipeline, or -1 if it is not a known stage."""
    try:
        return _ORDER.index(Stage(value))
    except ValueError:
        return -1


def is_valid_stage(value: Optional[str]) -> bool:
    return stage_index(value) >= 0


def bind_stage_urls(
    project_id: Optional[str],
    links: Optional[Mapping[str, str]],
    templates: Mapping[str, str],
) -> dict[str, str]:
    """Resolve the URL bound to each clickable stage.

    An explicit link wins. Otherwise the stage template is used with
    `{project_id}` filled in; without a project id the stage stays unbound.
    `{revision_number}` is left for `derive_steps` to fill.
    """
    links = links or {}
    bindings: dict[str, str] = {}
    for stage in CLICKABLE_STAGES:
        explicit = links.get(stage.value)
        if explicit:
            bindings[stage.value] = explicit
            continue
        template = templates.get(stage.value)
        if template and project_id:
            bindings[stage.value] = template.replace("{project_id}", str(project_id))
    return bindings


def derive_steps(
    current_stage: Optional[str],
    url_bindings: Optional[Mapping[str, str]] = None,
    revision_number: Optional[int] = 1,
) -> list[StepView]:
    """Build the ordered step list for an order at `current_stage`."""
    current = stage_index(current_stage)
    url_bindings = url_bindings or {}
    revision = str(revision_number or 1)

    steps = []
    for index, stage in enumerate(_ORDER):
        if index < current:
            status = "completed"
        elif index == current:
            status = "in_progress"
        else:
            status = "pending"

        clickable = stage in CLICKABLE_STAGES
        url = None
        if clickable and index <= current:
            bound = url_bindings.get(stage.value)
            if bound:
                url = bound.replace("{revision_number}", revision)

        steps.append(
            StepView(
                id=stage.value,
                label=STAGE_LABELS[stage],
                status=status,
                clickable=clickable,
                url=url,
            )
        )
    return steps
