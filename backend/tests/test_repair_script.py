"""Tests for the foreign mapping repair job."""

import pytest
from sqlalchemy.orm import sessionmaker

from scripts import repair_foreign_mappings as job


@pytest.fixture
def job_session(db_engine, monkeypatch):
    monkeypatch.setattr(job, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=db_engine))


@pytest.fixture
def copied_recipe(cafe, make_recipe):
    recipe = make_recipe(cafe["db"], cafe["other"], "classic-croffle", [(cafe["croissant"], "Croissant", 1, "piece")])
    cafe["db"].commit()
    return recipe


def test_dry_run_reports_without_changes(cafe, copied_recipe, job_session, capsys):
    assert job.main(["--store-id", str(cafe["other"].id), "--dry-run"]) == 1
    assert "1 foreign" in capsys.readouterr().out

    cafe["db"].refresh(copied_recipe)
    assert copied_recipe.lines[0].inventory_item_id == cafe["croissant"].id


def test_repair_all_stores(cafe, copied_recipe, job_session, capsys):
    assert job.main(["--all-stores"]) == 0
    assert "fixed 1" in capsys.readouterr().out

    cafe["db"].expire_all()
    assert copied_recipe.lines[0].inventory_item_id == cafe["other_croissant"].id


def test_unknown_store(cafe, job_session):
    assert job.main(["--store-id", "999"]) == 2
