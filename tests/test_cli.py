import json

from resort_quote.cli import main

REGISTRY = {
    "resorts": [{"id": "r1", "name": "Azure Lagoon"}],
    "room_types": [
        {
            "id": "villa",
            "resort_id": "r1",
            "name": "Beach Villa",
            "max_occupancy_adults": 3,
            "max_occupancy_children": 1,
            "max_occupancy_total": 4,
            "base_occupancy_adults": 2,
        }
    ],
    "seasons": [
        {
            "id": "all",
            "resort_id": "r1",
            "name": "All year",
            "date_ranges": [{"start_date": "2025-01-01", "end_date": "2025-12-31"}],
        }
    ],
    "rates": [
        {
            "id": "rate-1",
            "resort_id": "r1",
            "room_type_id": "villa",
            "season_id": "all",
            "cost_amount": "200",
            "currency_code": "USD",
        }
    ],
    "markup_configurations": [{"id": "m", "resort_id": "r1", "markup_type": "PERCENTAGE", "markup_value": "10"}],
}


def _files(tmp_path, adults=2):
    reference = tmp_path / "reference.json"
    reference.write_text(json.dumps(REGISTRY), encoding="utf-8")
    request = tmp_path / "request.json"
    request.write_text(
        json.dumps(
            {
                "client_name": "A. Traveller",
                "booking_date": "2025-01-15",
                "legs": [
                    {
                        "resort_id": "r1",
                        "room_type_id": "villa",
                        "check_in_date": "2025-03-01",
                        "check_out_date": "2025-03-05",
                        "adults_count": adults,
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    return request, reference


def test_prints_priced_quote(tmp_path, capsys):
    request, reference = _files(tmp_path)

    code = main([str(request), "--reference-data", str(reference), "--compact"])

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["currency_code"] == "USD"
    assert out["totals"]["total_sell"] == "880.00"


def test_failed_quote_exits_one(tmp_path, capsys):
    request, reference = _files(tmp_path, adults=4)

    code = main([str(request), "--reference-data", str(reference)])

    out = json.loads(capsys.readouterr().out)
    assert code == 1
    assert out["success"] is False
    assert out["warnings"][0]["severity"] == "BLOCKING"


def test_invalid_request_exits_two(tmp_path, capsys):
    _, reference = _files(tmp_path)
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"client_name": "x", "legs": []}), encoding="utf-8")

    assert main([str(bad), "--reference-data", str(reference)]) == 2
    assert capsys.readouterr().out == ""


def test_missing_reference_file_exits_two(tmp_path):
    request, _ = _files(tmp_path)
    assert main([str(request), "--reference-data", str(tmp_path / "absent.json")]) == 2
