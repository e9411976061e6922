"""DPI application and category labels."""
from dpi_mappings import get_application_name, get_category_name


class TestLabels:

    def test_known_names(self):
        assert get_category_name(5) == 'Video'
        assert get_application_name(95, 5) == 'YouTube'

    def test_application_ids_depend_on_category(self):
        # 186 is mDNS under Technology but unknown under Video
        assert get_application_name(186, 20) == 'mDNS'
        assert get_application_name(186, 5) == 'App 186'

    def test_string_ids(self):
        assert get_category_name('24') == 'Gaming'
        assert get_application_name('3', '24') == 'Xbox'

    def test_unknown_ids(self):
        assert get_category_name(999) == 'Category 999'
        assert get_category_name(None) == 'Category None'
        assert get_application_name(1, None) == 'App 1'
