import json

import pytest

from webapp.app import create_app

PROJECTS_CSV = """id,project_name,status,fab_hours,fab_window_start,fab_window_end,fab_daily_overrides
p1,Canopy,awarded,40,2025-03-03,2025-03-07,
"""


@pytest.fixture
def root(tmp_path, monkeypatch):
    input_dir = tmp_path / "shop" / "input"
    input_dir.mkdir(parents=True)
    (input_dir / "config.json").write_text(json.dumps({"shop_capacity_hours_per_week": 200}))
    (input_dir / "projects.csv").write_text(PROJECTS_CSV)
    (input_dir / "production_entries.json").write_text(
        json.dumps([{"id": "m1", "project_name": "Rails", "start_date": "2025-03-03", "total_hours": 60}])
    )
    (tmp_path / "broken").mkdir()
    monkeypatch.setenv("PROJECTS_ROOT", str(tmp_path))
    return tmp_path


@pytest.fixture
def client(root):
    app = create_app()
    app.config["TESTING"] = True
    return app.test_client()


class TestDirs:
    def test_lists_portfolios(self, client):
        data = client.get("/dirs").get_json()
        assert [(item["name"], item["is_valid"]) for item in data["projects"]] == [
            ("broken", False),
            ("shop", True),
        ]


class TestSchedule:
    def test_schedule_payload(self, client):
        response = client.get("/api/schedule/shop?today=2025-03-03")
        assert response.status_code == 200
        data = response.get_json()
        assert data["weekly_capacity_hours"] == 200
        assert len(data["weeks"]) == 24
        monday = data["daily_totals"][0]
        assert monday["date"] == "2025-03-03"
        assert monday["total_hours"] == pytest.approx(48)
        assert {part["load_id"] for part in monday["loads"]} == {"p1", "m1"}
        assert data["weeks"][0]["status"] == "gap"
        assert data["recommendations"][0]["week_start"] == "2025-03-03"

    def test_unknown_portfolio(self, client):
        assert client.get("/api/schedule/missing").status_code == 404

    def test_portfolio_without_config(self, client):
        assert client.get("/api/schedule/broken").status_code == 404

    def test_bad_today(self, client):
        assert client.get("/api/schedule/shop?today=whenever").status_code == 400


class TestWeek:
    def test_week_rows(self, client):
        data = client.get("/api/week/shop?date=2025-03-05").get_json()
        assert data["date"] == "2025-03-05"
        rows = {row["key"]: row for row in data["loads"]}
        assert set(rows) == {"project-p1", "manual-m1"}
        assert rows["project-p1"]["total_hours"] == pytest.approx(40)
        assert len(rows["manual-m1"]["days"]) == 7
        assert rows["manual-m1"]["can_delete"] is True


class TestOverrides:
    def test_manual_override_saved(self, client, root):
        response = client.post(
            "/api/overrides/shop",
            json={"load_id": "m1", "source": "manual", "date": "2025-03-04", "value": "12"},
        )
        assert response.status_code == 200
        assert response.get_json() == {"success": True, "overrides": {"2025-03-04": 12.0}}
        stored = json.loads((root / "shop" / "input" / "production_entries.json").read_text())
        assert stored[0]["overrides"] == {"2025-03-04": 12.0}

    def test_project_override_changes_schedule(self, client):
        client.post(
            "/api/overrides/shop",
            json={"load_id": "p1", "source": "project", "date": "2025-03-05", "value": 20},
        )
        data = client.get("/api/week/shop?date=2025-03-05").get_json()
        days = {row["key"]: row["days"] for row in data["loads"]}["project-p1"]
        assert [cell["hours"] for cell in days[:5]] == [5, 5, 20, 5, 5]

    def test_blank_value_clears(self, client):
        client.post("/api/overrides/shop", json={"load_id": "m1", "source": "manual", "date": "2025-03-04", "value": 3})
        response = client.post(
            "/api/overrides/shop", json={"load_id": "m1", "source": "manual", "date": "2025-03-04", "value": ""}
        )
        assert response.get_json()["overrides"] is None

    def test_bad_source(self, client):
        response = client.post("/api/overrides/shop", json={"load_id": "m1", "source": "crm", "date": "2025-03-04"})
        assert response.status_code == 400

    def test_missing_date(self, client):
        response = client.post("/api/overrides/shop", json={"load_id": "m1", "source": "manual"})
        assert response.status_code == 400

    def test_unknown_load(self, client):
        response = client.post(
            "/api/overrides/shop", json={"load_id": "zz", "source": "manual", "date": "2025-03-04", "value": 1}
        )
        assert response.status_code == 404

    def test_unknown_portfolio(self, client):
        response = client.post(
            "/api/overrides/nowhere", json={"load_id": "m1", "source": "manual", "date": "2025-03-04", "value": 1}
        )
        assert response.status_code == 404


class TestEntries:
    def test_entry_created_and_scheduled(self, client, root):
        response = client.post(
            "/api/entries/shop",
            json={"project_name": "Gates", "start_date": "2025-03-10", "end_date": "2025-03-14", "total_hours": 25},
        )
        assert response.status_code == 201
        data = response.get_json()
        assert data["warnings"] == []
        assert data["entry"]["project_name"] == "Gates"
        stored = json.loads((root / "shop" / "input" / "production_entries.json").read_text())
        assert [item["project_name"] for item in stored] == ["Rails", "Gates"]
        week = client.get("/api/week/shop?date=2025-03-12").get_json()
        rows = {row["key"]: row for row in week["loads"]}
        assert rows["manual-" + data["entry"]["id"]]["total_hours"] == pytest.approx(25)

    def test_overbooking_returns_warning(self, client):
        response = client.post(
            "/api/entries/shop",
            json={"project_name": "Rush", "start_date": "2025-03-10", "end_date": "2025-03-10", "total_hours": 100},
        )
        assert response.status_code == 201
        assert len(response.get_json()["warnings"]) == 1

    def test_invalid_entry(self, client, root):
        response = client.post(
            "/api/entries/shop",
            json={"project_name": "Job", "start_date": "2025-03-14", "end_date": "2025-03-10", "total_hours": 5},
        )
        assert response.status_code == 400
        assert "before start" in response.get_json()["error"]
        stored = json.loads((root / "shop" / "input" / "production_entries.json").read_text())
        assert len(stored) == 1

    def test_unknown_portfolio(self, client):
        response = client.post(
            "/api/entries/nowhere", json={"project_name": "Job", "start_date": "2025-03-10", "total_hours": 5}
        )
        assert response.status_code == 404


class TestSharedIds:
    def test_project_and_manual_with_same_id(self, tmp_path, monkeypatch):
        input_dir = tmp_path / "shop" / "input"
        input_dir.mkdir(parents=True)
        (input_dir / "config.json").write_text(json.dumps({"shop_capacity_hours_per_week": 200}))
        (input_dir / "projects.csv").write_text(
            "id,project_name,status,fab_hours,fab_window_start,fab_window_end\n1,Canopy,awarded,40,2025-03-03,2025-03-07\n"
        )
        (input_dir / "production_entries.json").write_text(
            json.dumps([{"id": "1", "project_name": "Rails", "start_date": "2025-03-03",
                         "end_date": "2025-03-07", "total_hours": 60}])
        )
        monkeypatch.setenv("PROJECTS_ROOT", str(tmp_path))
        data = create_app().test_client().get("/api/schedule/shop?today=2025-03-03").get_json()
        breakdown = {part["key"]: part["hours"] for part in data["weeks"][0]["breakdown"]}
        assert breakdown == {"manual-1": pytest.approx(60), "project-1": pytest.approx(40)}
