"""Text and binary dumps of a particle filter.

Text output starts with a "#" header holding the aggregate score and, per
dumped axis, the current and previous rank-1 values and their diff:

    # score <score>
    # <axis> rank1 <value columns...>
    # <axis> rank1_previous <value columns...>
    # <axis> diff <diff>

followed by one line per sample:

    <axis> <index> <value columns...> <weight> [<aux>]

Rotation values are four columns (padded direction or quaternion),
translation two, class and defocus one.
"""

from pathlib import Path
from typing import List, Optional, Union

import torch

from ..utils.config import Axis, as_axis


def _format_value(value) -> str:
    if not isinstance(value, torch.Tensor):
        return str(value)
    if value.dim() == 0:
        if value.dtype == torch.long:
            return str(int(value))
        return f"{float(value):.10g}"
    return " ".join(f"{float(v):.10g}" for v in value)


def format_header(pf, axis=None) -> List[str]:
    """Render the score and the rank-1/diff snapshot of one axis (all when None)."""
    axes = list(Axis) if axis is None else [as_axis(axis)]
    lines = [f"# score {pf.score():.10g}"]
    for ax in axes:
        diff = pf.diff(ax)
        shown = int(diff) if isinstance(diff, bool) else f"{float(diff):.10g}"
        lines.append(f"# {ax.value} rank1 {_format_value(pf.rank1(ax))}")
        lines.append(f"# {ax.value} rank1_previous {_format_value(pf.rank1_previous(ax))}")
        lines.append(f"# {ax.value} diff {shown}")
    return lines


def format_particles(pf, axis=None, include_aux: bool = False) -> List[str]:
    """Render the samples of one axis (all when None) as text lines.

    Args:
        pf: ParticleFilter
        axis: Axis to render
        include_aux: Append the auxiliary weight column

    Returns:
        One line per sample
    """
    axes = list(Axis) if axis is None else [as_axis(axis)]
    lines = []
    for ax in axes:
        ensemble = pf.ensemble(ax)
        values = ensemble.values
        weights = ensemble.weights
        aux = ensemble.aux
        for i in range(len(ensemble)):
            fields = [ax.value, str(i), _format_value(values[i]), f"{float(weights[i]):.10g}"]
            if include_aux:
                fields.append(f"{float(aux[i]):.10g}")
            lines.append(" ".join(fields))
    return lines


def display(pf):
    """Print a short summary followed by the rank-1 estimate and diff of every axis."""
    print(repr(pf))
    print(f"params: {pf.params}")
    print(f"peak factors: {pf.schedule.as_dict()}")
    for axis in Axis:
        shown = _format_value(pf.rank1(axis))
        print(f"{axis.name.lower()}: count={pf.count(axis)} "
              f"ess={pf.ess(axis):.2f} compression={pf.compression(axis):.4g} "
              f"rank1={shown} diff={_format_value(pf.diff(axis))}")
    print(f"score: {pf.score():.4g}")


def save(
    path: Union[str, Path],
    pf,
    axis: Optional[Union[str, Axis]] = None,
    include_aux: bool = False,
):
    """Write the header and the samples of one axis (all when None) to a text file."""
    path = Path(path)
    with open(path, "w") as f:
        for line in format_header(pf, axis=axis):
            f.write(line + "\n")
        for line in format_particles(pf, axis=axis, include_aux=include_aux):
            f.write(line + "\n")


def save_binary(path: Union[str, Path], pf):
    """Save pf.state_dict() with torch.save."""
    torch.save(pf.state_dict(), Path(path))
