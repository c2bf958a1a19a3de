import json
import unittest

from b24_bot.extract import (
    ExplicitTotal,
    ItemList,
    classify_count_result,
    count_undone,
    extract_group_name,
    extract_today,
    extract_total,
    extract_total_unread,
    extract_unread_dialogs,
    extract_user_id,
)


class TestExtractTotal(unittest.TestCase):
    def test_root_and_nested_total(self) -> None:
        self.assertEqual(extract_total('{"result": [], "total": 4}'), 4)
        self.assertEqual(extract_total('{"result": {"tasks": [], "TOTAL": "9"}}'), 9)

    def test_missing_total(self) -> None:
        self.assertIsNone(extract_total('{"result": []}'))
        self.assertIsNone(extract_total(''))

    def test_raw_fallback_on_broken_json(self) -> None:
        body = '{"result":{"tasks":[{"id":"1"}]},"total":12,"time":{"start":1'
        self.assertEqual(extract_total(body), 12)

    def test_clamped_to_u16(self) -> None:
        self.assertEqual(extract_total('{"total": 70000}'), 65535)


class TestCounters(unittest.TestCase):
    def test_unread_dialogs_prefers_type_dialog(self) -> None:
        body = json.dumps({'result': {'TYPE': {'DIALOG': 3, 'ALL': 11}, 'DIALOG': 99}})
        self.assertEqual(extract_unread_dialogs(body), 3)
        self.assertEqual(extract_total_unread(body), 11)

    def test_unread_fallbacks(self) -> None:
        body = json.dumps({'result': {'TYPE': {'MESSENGER': '5'}, 'DIALOG': '2'}})
        self.assertEqual(extract_unread_dialogs(body), 2)
        self.assertEqual(extract_total_unread(body), 5)

    def test_unread_failure(self) -> None:
        self.assertIsNone(extract_unread_dialogs(''))
        self.assertIsNone(extract_unread_dialogs('{"error": "expired_token"}'))
        self.assertIsNone(extract_total_unread('not json'))

    def test_user_id(self) -> None:
        self.assertEqual(extract_user_id('{"result": {"ID": "356"}}'), 356)
        self.assertEqual(extract_user_id('{"result": {"ID": 12}}'), 12)
        self.assertIsNone(extract_user_id('{"result": {"ID": "abc"}}'))
        self.assertIsNone(extract_user_id('{"result": {}}'))

    def test_today_shapes(self) -> None:
        self.assertEqual(extract_today('{"result": "2024-03-05T10:11:12+03:00"}'), '2024-03-05')
        self.assertEqual(extract_today('{"result": {"time": "2024-03-06 08:00:00"}}'), '2024-03-06')
        self.assertEqual(extract_today('{"result": {"TIME": "2024-03-07"}}'), '2024-03-07')
        self.assertEqual(extract_today('{"time": "2024-03-08T00:00:00"}'), '2024-03-08')
        self.assertIsNone(extract_today('{"result": "yesterday"}'))
        self.assertIsNone(extract_today('{"result": "yesterday", "time": "2024-03-09"}'))
        self.assertIsNone(extract_today(''))


class TestCountResult(unittest.TestCase):
    def test_top_level_list(self) -> None:
        res = classify_count_result('{"result": [{"USER_ID": "7", "STATUS": "0"}], "total": 50}')
        self.assertIsInstance(res, ItemList)

    def test_nested_tasks_list(self) -> None:
        res = classify_count_result('{"result": {"tasks": [{"USER_ID": 7, "STATUS": 0}], "total": 50}}')
        self.assertIsInstance(res, ItemList)
        assert isinstance(res, ItemList)
        self.assertEqual(len(res.items), 1)

    def test_explicit_total(self) -> None:
        self.assertEqual(classify_count_result('{"result": {"total": 4}}'), ExplicitTotal(total=4))

    def test_unrecognized_shapes(self) -> None:
        self.assertIsNone(classify_count_result('{"result": {"total": "4"}}'))
        self.assertIsNone(classify_count_result('{"result": 5}'))
        self.assertIsNone(classify_count_result(''))

    def test_count_undone_filters_by_user_and_status(self) -> None:
        items = (
            {'USER_ID': '7', 'STATUS': '0'},
            {'USER_ID': 7, 'STATUS': 0},
            {'USER_ID': '7', 'STATUS': '1'},
            {'USER_ID': '8', 'STATUS': '0'},
            {'USER_ID': '7'},
        )
        self.assertEqual(count_undone(items, user_id=7), 2)


class TestGroupName(unittest.TestCase):
    def test_object_and_array(self) -> None:
        self.assertEqual(extract_group_name('{"result": {"NAME": "Office move"}}'), 'Office move')
        self.assertEqual(extract_group_name('{"result": [{"name": "Website"}]}'), 'Website')

    def test_missing(self) -> None:
        self.assertEqual(extract_group_name('{"result": []}'), '')
        self.assertEqual(extract_group_name(''), '')
