import pytest

from membermap.core.config import settings
from membermap.models.dto import MarkerState, Profile, UserLocation, Viewport
from membermap.services.map_session import MapSession, UnknownClusterError, UnknownUserError


def _profile(user_id, name, lat, lng, country="中国", province="北京"):
    return Profile(
        id=user_id,
        name=name,
        location=UserLocation(lat=lat, lng=lng, country=country, province=province, city=province),
    )


def _profiles():
    return [
        _profile("u1", "Alice", 39.90, 116.40),
        _profile("u2", "Kali", 39.90, 116.40),
        _profile("u3", "Bob", 39.90, 116.40),
        _profile("u4", "Carol", 31.23, 121.47, province="上海"),
    ]


def _session(zoom=4, **kwargs):
    session = MapSession(Viewport(lat=35.0, lng=110.0, zoom=zoom), **kwargs)
    session.refresh(_profiles())
    return session


def _beijing_cluster(frame):
    return next(c for c in frame.clusters if "u1" in c.member_ids)


def test_default_and_clamped_viewport():
    assert MapSession().viewport.zoom == settings.DEFAULT_ZOOM
    assert MapSession(Viewport(lat=0, lng=0, zoom=1)).viewport.zoom == 2
    assert MapSession(Viewport(lat=0, lng=0, zoom=30)).viewport.zoom == 13


def test_stacked_members_render_as_one_cluster():
    session = _session()
    frame = session.render()
    assert frame.total_users == 4
    assert sorted(_beijing_cluster(frame).member_ids) == ["u1", "u2", "u3"]
    assert [m.user_id for m in frame.markers] == ["u4"]
    assert session.marker_state("u1") == MarkerState.CLUSTERED
    assert session.marker_state("u4") == MarkerState.INDIVIDUAL


def test_selection_lifecycle_keeps_display_coordinate():
    session = _session()
    session.render()
    before = session.display_coordinate("u1")

    session.select("u1")
    assert session.viewport.zoom == settings.FLY_TO_ZOOM
    assert (session.viewport.lat, session.viewport.lng) == (before.lat, before.lng)

    frame = session.render()
    assert frame.standalone.user_id == "u1"
    assert (frame.standalone.lat, frame.standalone.lng) == (before.lat, before.lng)
    assert frame.standalone.state == MarkerState.STANDALONE
    assert "u1" not in [m.user_id for m in frame.markers]
    assert session.marker_state("u1") == MarkerState.STANDALONE

    session.deselect()
    session.set_viewport(Viewport(lat=35.0, lng=110.0, zoom=4))
    frame = session.render()
    assert frame.standalone is None
    assert "u1" in _beijing_cluster(frame).member_ids
    assert session.display_coordinate("u1") == before


def test_selected_member_leaves_the_cluster_layer():
    session = _session(zoom=4)
    session.select("u1", fly_to=False)
    assert session.viewport.zoom == 4
    frame = session.render()
    assert all("u1" not in c.member_ids for c in frame.clusters)
    assert frame.standalone.user_id == "u1"


def test_select_unknown_user():
    with pytest.raises(UnknownUserError):
        _session().select("nobody")


def test_refresh_keeps_selection_and_placement():
    session = _session()
    session.select("u2")
    before = session.display_coordinate("u2")

    session.refresh(_profiles())
    assert session.selected_id == "u2"
    assert session.display_coordinate("u2") == before

    session.refresh([p for p in _profiles() if p.id != "u2"])
    assert session.selected_id is None
    with pytest.raises(UnknownUserError):
        session.display_coordinate("u2")


def test_region_filter_survives_refresh():
    session = _session()
    session.apply_filter(country="China", province="Shanghai")
    assert [p.id for p in session.visible_profiles()] == ["u4"]

    session.refresh(_profiles())
    assert session.render().total_users == 1

    session.clear_filter()
    assert session.render().total_users == 4


def test_province_filter_accepts_country_names():
    session = MapSession()
    session.refresh(_profiles() + [_profile("jp", "Dan", 35.68, 139.69, country="日本", province="Tokyo")])
    session.apply_filter(province="日本")
    assert [p.id for p in session.visible_profiles()] == ["jp"]


def test_search_highlights_matches():
    session = _session(zoom=12)
    matches = session.search("ALI")
    assert sorted(p.id for p in matches) == ["u1", "u2"]

    highlighted = {m.user_id: m.highlighted for m in session.render().markers}
    assert highlighted == {"u1": True, "u2": True, "u3": False, "u4": False}

    session.search("")
    assert not any(m.highlighted for m in session.render().markers)


def test_expand_reaches_individual_markers():
    session = _session()
    cluster = _beijing_cluster(session.render())

    frame = session.expand(cluster.id)
    assert session.viewport.zoom >= session.cluster_floor
    assert all("u1" not in c.member_ids for c in frame.clusters)
    for user_id in ("u1", "u2", "u3"):
        assert session.marker_state(user_id) == MarkerState.INDIVIDUAL


def test_expand_unknown_cluster():
    with pytest.raises(UnknownClusterError):
        _session().expand("cluster-nobody")


def test_expand_at_max_zoom_spreads_members_in_place():
    session = _session(zoom=13, cluster_floor=20, cluster_radius_px=5000)
    cluster = _beijing_cluster(session.render())

    frame = session.expand(cluster.id)
    assert session.viewport.zoom == 13
    assert all(c.id != cluster.id for c in frame.clusters)
    assert {"u1", "u2", "u3"} <= {m.user_id for m in frame.markers}
    assert session.marker_state("u3") == MarkerState.INDIVIDUAL
