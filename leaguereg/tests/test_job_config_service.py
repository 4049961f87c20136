"""
Tests for registration mode derivation and job lookup.
"""

import json

import pytest

from leaguereg.services import job_config_service
from leaguereg.services.job_config_service import JobNotFoundError
from leaguereg.tests.factories import make_job


@pytest.mark.parametrize(
    "core,options,expected",
    [
        ("CAC09|BYAGEGROUP", None, "CAC"),
        ("PP10|BYGRADYEAR", json.dumps({"registrationMode": "CAC"}), "PP"),
        ("cac01", None, "CAC"),
        ("1", json.dumps({"profileMode": "CAC"}), "CAC"),
        ("0", None, "PP"),
        (None, json.dumps({"regProfileType": " cac "}), "CAC"),
        (None, json.dumps({"registrationType": "PP"}), "PP"),
        (None, "{not json", "PP"),
        (None, json.dumps(["CAC"]), "PP"),
        ("", "", "PP"),
        ("XYZ|foo", None, "PP"),
    ],
)
def test_get_registration_mode(core, options, expected):
    assert job_config_service.get_registration_mode(core, options) == expected


@pytest.mark.asyncio
async def test_get_job(db_session):
    job = await make_job(db_session)

    loaded = await job_config_service.get_job(db_session, job.id)

    assert loaded.id == job.id


@pytest.mark.asyncio
async def test_get_job_missing(db_session):
    with pytest.raises(JobNotFoundError):
        await job_config_service.get_job(db_session, 12345)
