"""Read-side view of resend groups for presentation."""

from conciliador.models import OriginGroupView, ResendGroup


def sorted_origins(groups: ResendGroup) -> list[str]:
    return sorted(groups)


def present_groups(groups: ResendGroup) -> list[OriginGroupView]:
    """Origins in lexicographic order, each with its items untouched."""
    return [
        OriginGroupView(origem=origin, count=len(groups[origin]), items=list(groups[origin]))
        for origin in sorted_origins(groups)
    ]
