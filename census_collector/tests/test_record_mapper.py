from __future__ import annotations

import unittest

from census_collector.exceptions import InvalidRecordInputError
from census_collector.models import TableRecord, merge_table
from census_collector.services.record_mapper import RecordMapper


def metadata_content(**extra):
    content = {
        "title": "SEX BY AGE",
        "universe": "Total population",
        "dataset": {"name": "ACS 1-Year Estimates Detailed Tables", "vintage": "2021"},
        "measures": [
            {"id": "B01001_001E", "label": "Estimate!!Total:", "concept": "SEX BY AGE"},
        ],
        "dimensions": [
            {
                "id": "GEO_ID",
                "label": "Geography",
                "dimension_type": {"id": "GEOGRAPHY"},
                "item": {"label": "United States"},
            },
            {"id": "SEX", "label": "Sex", "dimensionType": "CATEGORY"},
        ],
    }
    content.update(extra)
    return content


class RecordMapperTests(unittest.TestCase):
    def setUp(self) -> None:
        self.mapper = RecordMapper("https://data.census.gov/table")

    def test_year_and_vintage_fall_back_to_identifier(self) -> None:
        record = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001", title="SEX BY AGE"))
        self.assertEqual(record.table_id, "ACSDT1Y2021.B01001")
        self.assertEqual(record.year, "2021")
        self.assertEqual(record.vintage, "2021")

    def test_explicit_year_and_vintage_win(self) -> None:
        record = self.mapper.map(
            TableRecord(id="ACSDT5Y2021.B19013", title="INCOME", year="2019", vintage="2021")
        )
        self.assertEqual(record.year, "2019")
        self.assertEqual(record.vintage, "2021")

    def test_one_temporal_field_fills_the_other(self) -> None:
        record = self.mapper.map(TableRecord(id="B19013", title="INCOME", vintage="2020"))
        self.assertEqual(record.year, "2020")
        self.assertEqual(record.vintage, "2020")

    def test_dataset_vintage_is_last_resort(self) -> None:
        record = self.mapper.map(
            TableRecord(id="B19013", metadata={"dataset": {"vintage": "2018"}})
        )
        self.assertEqual(record.year, "2018")

    def test_placeholder_titles_become_unavailable(self) -> None:
        for title in [None, "", "Untitled", "untitled table"]:
            with self.subTest(title=title):
                record = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001", title=title))
                self.assertEqual(record.title, "Unavailable")

    def test_title_falls_back_to_metadata_content(self) -> None:
        record = self.mapper.map(
            TableRecord(id="ACSDT1Y2021.B01001", metadata={"metadataContent": metadata_content()})
        )
        self.assertEqual(record.title, "SEX BY AGE")
        self.assertEqual(record.universe, "Total population")
        self.assertEqual(record.survey, "ACS 1-Year Estimates Detailed Tables")

    def test_url_defaults_to_table_viewer(self) -> None:
        record = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001"))
        self.assertEqual(record.url, "https://data.census.gov/table?tid=ACSDT1Y2021.B01001")

        kept = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001", url="https://example.org/t"))
        self.assertEqual(kept.url, "https://example.org/t")

    def test_geography_from_geography_dimension(self) -> None:
        record = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001", metadata=metadata_content()))
        self.assertEqual(record.geography, "United States")

    def test_no_geography_dimension(self) -> None:
        content = metadata_content(dimensions=[{"id": "SEX", "dimensionType": "CATEGORY"}])
        record = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001", metadata=content))
        self.assertIsNone(record.geography)

    def test_variables_are_reduced_to_id_and_label(self) -> None:
        record = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001", metadata=metadata_content()))
        output = record.to_output()
        self.assertEqual(
            output["variables"]["measures"],
            [{"id": "B01001_001E", "label": "Estimate!!Total:"}],
        )
        self.assertEqual(output["variables"]["dimensions"][1], {"id": "SEX", "label": "Sex", "dimensionType": "CATEGORY"})

    def test_flat_variable_map_is_split_by_predicate_type(self) -> None:
        content = {
            "variables": {
                "B01001_001E": {"label": "Total", "predicateType": "int"},
                "NAME": {"label": "Geographic Area Name", "predicateType": "string"},
            }
        }
        record = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001", metadata=content))
        self.assertEqual([m.id for m in record.variables.measures], ["B01001_001E"])
        self.assertEqual([d.id for d in record.variables.dimensions], ["NAME"])

    def test_no_variables_leaves_field_out(self) -> None:
        record = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001"))
        self.assertIsNone(record.variables)
        self.assertNotIn("variables", record.to_output())

    def test_missing_identifier_is_rejected(self) -> None:
        with self.assertRaises(InvalidRecordInputError):
            self.mapper.map(TableRecord(title="SEX BY AGE"))

    def test_mapping_is_idempotent_apart_from_timestamp(self) -> None:
        table = TableRecord(id="ACSDT1Y2021.B01001", data=[["NAME"], ["US"]], metadata=metadata_content())
        first = self.mapper.map(table).to_output()
        second = self.mapper.map(table).to_output()
        first.pop("scrapedTimestamp")
        second.pop("scrapedTimestamp")
        self.assertEqual(first, second)

    def test_output_omits_unknown_fields_but_keeps_nulls_in_data(self) -> None:
        record = self.mapper.map(TableRecord(id="ACSDT1Y2021.B01001", data=[["NAME", None]]))
        output = record.to_output()
        self.assertNotIn("description", output)
        self.assertNotIn("geography", output)
        self.assertEqual(output["data"], [["NAME", None]])
        self.assertTrue(output["scrapedTimestamp"].endswith("Z"))


class MergeTableTests(unittest.TestCase):
    def test_metadata_wins_except_for_data(self) -> None:
        metadata = TableRecord(id="ACSDT1Y2021.B01001", title="SEX BY AGE", data=None)
        data = TableRecord(id="ACSDT1Y2021.B01001", title="other", data=[["x"]])
        merged = merge_table("ACSDT1Y2021.B01001", metadata, data)
        self.assertEqual(merged.title, "SEX BY AGE")
        self.assertEqual(merged.data, [["x"]])

    def test_missing_data_keeps_metadata(self) -> None:
        metadata = TableRecord(title="SEX BY AGE")
        merged = merge_table("ACSDT1Y2021.B01001", metadata, None)
        self.assertEqual(merged.id, "ACSDT1Y2021.B01001")
        self.assertIsNone(merged.data)


if __name__ == "__main__":
    unittest.main()
