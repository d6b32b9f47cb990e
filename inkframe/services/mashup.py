from markupsafe import Markup, escape

LAYOUT_REGIONS: dict[str, tuple[str, ...]] = {
    "1x1": ("full",),
    "1Lx1R": ("half_vertical", "half_vertical"),
    "1Tx1B": ("half_horizontal", "half_horizontal"),
    "1Lx2R": ("half_vertical", "quadrant", "quadrant"),
    "2Lx1R": ("quadrant", "quadrant", "half_vertical"),
    "1Tx2B": ("half_horizontal", "quadrant", "quadrant"),
    "2Tx1B": ("quadrant", "quadrant", "half_horizontal"),
    "2x2": ("quadrant", "quadrant", "quadrant", "quadrant"),
}

LAYOUT_LABELS: dict[str, str] = {
    "1x1": "Single",
    "1Lx1R": "1 Left - 1 Right",
    "1Tx1B": "1 Top - 1 Bottom",
    "1Lx2R": "1 Left - 2 Right",
    "2Lx1R": "2 Left - 1 Right",
    "1Tx2B": "1 Top - 2 Bottom",
    "2Tx1B": "2 Top - 1 Bottom",
    "2x2": "Quadrant",
}


class MashupConfigurationError(ValueError):
    pass


def required_count(layout: str) -> int:
    if layout not in LAYOUT_REGIONS:
        raise MashupConfigurationError(f"Unknown mashup layout: {layout}")
    return len(LAYOUT_REGIONS[layout])


def region_sizes(layout: str) -> tuple[str, ...]:
    required_count(layout)
    return LAYOUT_REGIONS[layout]


def validate(layout: str, plugin_ids: list[int]) -> None:
    expected = required_count(layout)
    if len(plugin_ids) != expected:
        raise MashupConfigurationError(
            f"Layout {layout} requires exactly {expected} plugins, got {len(plugin_ids)}"
        )


def _group(regions: list[Markup], sizes: tuple[str, ...], size: str) -> Markup:
    return Markup("").join(region for region, s in zip(regions, sizes) if s == size)


def compose(layout: str, fragments: list[str]) -> Markup:
    """Place already rendered region fragments into the layout container."""
    sizes = region_sizes(layout)
    if len(fragments) != len(sizes):
        raise MashupConfigurationError(
            f"Layout {layout} requires exactly {len(sizes)} fragments, got {len(fragments)}"
        )
    regions = [
        Markup('<div class="view view--{size}">{body}</div>').format(size=size, body=Markup(fragment))
        for size, fragment in zip(sizes, fragments)
    ]
    if layout in {"1Lx2R", "2Lx1R", "1Tx2B", "2Tx1B"}:
        # the two quadrants share one column/row
        single = next(s for s in sizes if s != "quadrant")
        quads = Markup('<div class="mashup__stack">{}</div>').format(_group(regions, sizes, "quadrant"))
        lead = _group(regions, sizes, single)
        body = lead + quads if sizes[0] != "quadrant" else quads + lead
    else:
        body = Markup("").join(regions)
    return Markup('<div class="mashup mashup--{layout}">{body}</div>').format(layout=escape(layout), body=body)
