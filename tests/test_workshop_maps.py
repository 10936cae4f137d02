from metadata_store import TrackedFile, TrackedItem
from workshop_maps import extract_map_name, render_workshop_maps, write_workshop_maps


def make_item(item_id, *paths):
    return TrackedItem(
        id=item_id,
        title=f"Item {item_id}",
        version_marker="v",
        files=[TrackedFile(path, "") for path in paths],
    )


class TestExtractMapName:
    def test_first_bsp_wins(self):
        item = make_item("1", "maps/de_a.nav", "maps/de_a.bsp", "maps/de_b.bsp")

        assert extract_map_name(item) == "de_a"

    def test_extension_is_case_insensitive(self):
        assert extract_map_name(make_item("1", "maps/Surf_Kitsune.BSP")) == "Surf_Kitsune"

    def test_no_map(self):
        assert extract_map_name(make_item("1", "materials/a.vtf")) is None


class TestRender:
    def test_empty_index(self):
        assert render_workshop_maps([]) == '"WorkshopMaps"\n{\n}\n'

    def test_entries_sorted_and_mapless_items_skipped(self):
        items = [
            make_item("200", "maps/de_b.bsp"),
            make_item("150", "sound/a.wav"),
            make_item("100", "maps/de_a.bsp"),
        ]

        assert render_workshop_maps(items) == (
            '"WorkshopMaps"\n'
            "{\n"
            '\t"de_a"\t\t"100"\n'
            '\t"de_b"\t\t"200"\n'
            "}\n"
        )

    def test_write(self, tmp_path):
        target = tmp_path / "cfg" / "workshop_maps.txt"

        write_workshop_maps(target, [make_item("100", "maps/de_a.bsp")])

        assert '"de_a"' in target.read_text(encoding="utf-8")
