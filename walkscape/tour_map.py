"""Static HTML preview of a tour's regions."""

from typing import Optional

import folium
from folium import plugins

from .geo import path_length
from .models import Location, Tour

KIND_COLORS = {
    "audio": "#2563eb",
    "tone": "#f59e0b",
    None: "#888888",
}


def region_popup(tour: Tour, region_id: str, locale: str) -> str:
    region = tour.get_region(region_id)
    track = tour.track_for(region_id, locale)
    lines = [f"<b>#{region.sort} {region.name or region.id}</b>", f"Radius: {region.radius_m:.0f}m"]
    if track is None or track.kind is None:
        lines.append("<i>No track</i>")
    else:
        if track.title:
            lines.append(track.title)
        if track.kind == "tone":
            lines.append(f"Tone {track.frequency:g} Hz")
        else:
            lines.append(f"Audio: {track.audio_filename or track.audio_url or track.audio_key}")
        if track.removed_due_to_size:
            lines.append("<i>Audio payload removed from cache</i>")
        if tour.subtitle_for(track, locale):
            lines.append("Subtitles")
    return "<br>".join(lines)


def create_tour_map(tour: Tour, locale: Optional[str] = None,
                    trace: Optional[list[Location]] = None) -> folium.Map:
    """Map with one circle per region, the walking order and an optional recorded trace"""
    locale = locale or tour.locale
    regions = tour.ordered_regions()
    if regions:
        center = [sum(r.lat for r in regions) / len(regions), sum(r.lng for r in regions) / len(regions)]
    else:
        center = [45.0705, 7.6868]

    m = folium.Map(location=center, zoom_start=15, tiles="CartoDB positron")
    folium.TileLayer("OpenStreetMap", name="OpenStreetMap").add_to(m)

    region_layer = folium.FeatureGroup(name="Regions", show=True)
    with_audio = 0
    for region in regions:
        track = tour.track_for(region.id, locale)
        kind = track.kind if track else None
        if track and track.playable_source() is not None:
            with_audio += 1
        color = KIND_COLORS.get(kind, KIND_COLORS[None])
        folium.Circle(
            [region.lat, region.lng],
            radius=region.radius_m,
            color=color,
            weight=2,
            fill=True,
            fill_opacity=0.2,
            popup=folium.Popup(region_popup(tour, region.id, locale), max_width=250),
        ).add_to(region_layer)
        folium.Marker(
            [region.lat, region.lng],
            icon=folium.DivIcon(html=f'<div style="font-weight:bold;font-size:14px">{region.sort}</div>'),
        ).add_to(region_layer)
    region_layer.add_to(m)

    points = [(r.lat, r.lng) for r in regions]
    if len(points) > 1:
        route_layer = folium.FeatureGroup(name="Walking order", show=True)
        folium.PolyLine(points, weight=3, color="#475569", opacity=0.7, dash_array="6 6").add_to(route_layer)
        route_layer.add_to(m)

    if trace:
        trace_layer = folium.FeatureGroup(name="Recorded trace", show=True)
        folium.PolyLine([(loc.lat, loc.lng) for loc in trace], weight=3, color="#ef4444",
                        opacity=0.8).add_to(trace_layer)
        trace_layer.add_to(m)

    if points:
        m.fit_bounds([[min(p[0] for p in points), min(p[1] for p in points)],
                      [max(p[0] for p in points), max(p[1] for p in points)]])

    folium.LayerControl().add_to(m)

    legend_html = f"""
    <div style="
        position: fixed;
        bottom: 50px;
        left: 50px;
        z-index: 1000;
        background-color: white;
        padding: 10px;
        border-radius: 5px;
        border: 2px solid grey;
        font-family: Arial;
        font-size: 12px;
    ">
        <b>{tour.title or tour.slug}</b> ({locale})<br>
        <hr style="margin: 5px 0">
        Regions: {len(regions)}<br>
        Playable: {with_audio}/{len(regions)}<br>
        Walking length: {path_length(points):.0f} m<br>
        Status: {'published' if tour.published else 'draft'}
    </div>
    """
    m.get_root().html.add_child(folium.Element(legend_html))
    plugins.Fullscreen().add_to(m)
    return m


def save_tour_map(tour: Tour, output: str, locale: Optional[str] = None,
                  trace: Optional[list[Location]] = None) -> str:
    create_tour_map(tour, locale=locale, trace=trace).save(output)
    return output
