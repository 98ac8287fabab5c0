"""Tests for leadchat.services.sheets — values API wrapper and compounds cache."""
from unittest.mock import MagicMock

import pytest

from leadchat.services.sheets import SheetsClient, CompoundCatalog, _column_letter


HEADER = ['Chat ID', 'Name', 'Phone']


@pytest.fixture
def service():
    """Stand-in for googleapiclient's Sheets v4 resource."""
    return MagicMock()


@pytest.fixture
def values_api(service):
    return service.spreadsheets.return_value.values.return_value


@pytest.fixture
def sheets(service):
    return SheetsClient(credentials_path='missing.json', service=service)


class TestColumnLetter:

    @pytest.mark.parametrize('index,letter', [(0, 'A'), (11, 'L'), (25, 'Z'), (26, 'AA'), (27, 'AB')])
    def test_letters(self, index, letter):
        assert _column_letter(index) == letter


class TestReadRecords:

    def test_rows_keyed_by_header(self, sheets, values_api):
        values_api.get.return_value.execute.return_value = {
            'values': [['Name', 'Location'], ['Palm Hills', 'October'], ['Hyde Park']],
        }
        assert sheets.read_records('sheet-1', 'compounds') == [
            {'Name': 'Palm Hills', 'Location': 'October'},
            {'Name': 'Hyde Park', 'Location': ''},
        ]
        assert values_api.get.call_args.kwargs['range'] == "'compounds'"

    def test_empty_sheet(self, sheets, values_api):
        values_api.get.return_value.execute.return_value = {}
        assert sheets.read_records('sheet-1', 'compounds') == []


class TestUpsertRow:
    """Look up by key column, update in place, else append."""

    def test_updates_existing_row_in_place(self, sheets, values_api):
        values_api.get.return_value.execute.return_value = {
            'values': [HEADER, ['AAA111', 'Old', ''], ['BBB222', 'Bob', '0100']],
        }
        action = sheets.upsert_row('sid', 'data', 'Chat ID',
                                   {'Chat ID': 'BBB222', 'Name': 'Bobby', 'Phone': '0111'}, HEADER)

        assert action == 'updated'
        kwargs = values_api.update.call_args.kwargs
        assert kwargs['range'] == "'data'!A3:C3"
        assert kwargs['body'] == {'values': [['BBB222', 'Bobby', '0111']]}
        values_api.append.assert_not_called()

    def test_appends_new_row(self, sheets, values_api):
        values_api.get.return_value.execute.return_value = {'values': [HEADER, ['AAA111', 'Ann', '']]}
        action = sheets.upsert_row('sid', 'data', 'Chat ID', {'Chat ID': 'CCC333', 'Name': 'Cy'}, HEADER)

        assert action == 'appended'
        kwargs = values_api.append.call_args.kwargs
        assert kwargs['body'] == {'values': [['CCC333', 'Cy', '']]}
        assert kwargs['insertDataOption'] == 'INSERT_ROWS'

    def test_writes_header_on_blank_sheet(self, sheets, values_api):
        values_api.get.return_value.execute.return_value = {}
        sheets.upsert_row('sid', 'data', 'Chat ID', {'Chat ID': 'X1'}, HEADER)

        header_call = values_api.update.call_args_list[0].kwargs
        assert header_call['range'] == "'data'!A1"
        assert header_call['body'] == {'values': [HEADER]}
        values_api.append.assert_called_once()

    def test_follows_sheet_column_order(self, sheets, values_api):
        values_api.get.return_value.execute.return_value = {'values': [['Phone', 'Chat ID', 'Name']]}
        sheets.upsert_row('sid', 'data', 'Chat ID', {'Chat ID': 'Z9', 'Name': 'Zed', 'Phone': '01'}, HEADER)
        assert values_api.append.call_args.kwargs['body'] == {'values': [['01', 'Z9', 'Zed']]}

    def test_missing_key_column_raises(self, sheets, values_api):
        values_api.get.return_value.execute.return_value = {'values': [['Name', 'Phone']]}
        with pytest.raises(ValueError):
            sheets.upsert_row('sid', 'data', 'Chat ID', {'Chat ID': 'Z9'}, HEADER)

    def test_api_errors_propagate(self, sheets, values_api):
        values_api.get.return_value.execute.side_effect = RuntimeError('quota')
        with pytest.raises(RuntimeError):
            sheets.upsert_row('sid', 'data', 'Chat ID', {'Chat ID': 'Z9'}, HEADER)


class TestCompoundCatalog:
    """Domain context is cached and failures yield []."""

    def test_loads_once_and_caches(self):
        client = MagicMock(configured=True)
        client.read_records.return_value = [{'Name': 'Palm Hills'}]
        catalog = CompoundCatalog(client, 'compounds-sheet', 'compounds')

        assert catalog() == [{'Name': 'Palm Hills'}]
        assert catalog.get() == [{'Name': 'Palm Hills'}]
        client.read_records.assert_called_once_with('compounds-sheet', 'compounds')

    def test_failure_returns_empty(self):
        client = MagicMock(configured=True)
        client.read_records.side_effect = RuntimeError('403')
        assert CompoundCatalog(client, 'compounds-sheet')() == []

    def test_unconfigured_returns_empty(self):
        client = MagicMock(configured=False)
        assert CompoundCatalog(client, 'compounds-sheet')() == []
        client.read_records.assert_not_called()

    def test_refresh_reloads(self):
        client = MagicMock(configured=True)
        client.read_records.side_effect = [[{'Name': 'A'}], [{'Name': 'B'}]]
        catalog = CompoundCatalog(client, 'compounds-sheet')
        catalog.get()
        assert catalog.refresh() == [{'Name': 'B'}]

    def test_client_without_credentials_is_not_configured(self):
        assert SheetsClient(credentials_path='/nonexistent/creds.json').configured is False
