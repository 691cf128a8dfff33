"""HTTP status mapping for the exception taxonomy."""

import warnings

import pytest

from finops_sla.core import (
    AlreadyAcknowledgedException,
    ApplicationException,
    InvalidStateException,
    ResourceNotFoundException,
    StoreUnavailableException,
    SyncFailedException,
    SyncTimeoutException,
    ValidationException,
)
from finops_sla.shared.api.middleware import status_code_for


@pytest.mark.parametrize("exc, expected", [
    (SyncTimeoutException(10, 2, 1), 504),
    (SyncFailedException("store down", 2, 1, 1), 503),
    (StoreUnavailableException("store down"), 503),
    (InvalidStateException("task-1", "DUE", "submit justification for"), 409),
    (AlreadyAcknowledgedException("task-1", 1), 409),
    (ValidationException("too short", {"min_length": 10}), 422),
    (ResourceNotFoundException("MonitoredTask", "task-1"), 404),
    (ApplicationException("anything else"), 400),
])
def test_status_codes(exc, expected):
    assert status_code_for(exc) == expected


def test_validation_mapping_emits_no_deprecation_warning():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert status_code_for(ValidationException("too short")) == 422
