import pytest
from fastapi import HTTPException
from unittest.mock import MagicMock, patch

from evcharge.features.auth import AuthenticatedUser, get_current_user

HEADER = "x-ms-client-principal-name"


def _settings(mock_user_email=None):
    return MagicMock(auth_user_header=HEADER, mock_user_email=mock_user_email)


@patch("evcharge.features.auth.dependencies.get_global_settings")
async def test_user_from_platform_header(mock_settings):
    """Test the caller is identified from the injected header"""
    mock_settings.return_value = _settings()
    request = MagicMock(headers={HEADER: " jane.doe@example.com "})

    user = await get_current_user(request)

    assert user.email == "jane.doe@example.com"
    assert user.name == "Jane Doe"


@patch("evcharge.features.auth.dependencies.get_global_settings")
async def test_missing_header_is_unauthorized(mock_settings):
    """Test requests without identity are rejected with 401"""
    mock_settings.return_value = _settings()

    with pytest.raises(HTTPException) as exc_info:
        await get_current_user(MagicMock(headers={}))

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Authentication Required"


@patch("evcharge.features.auth.dependencies.get_global_settings")
async def test_mock_user_fallback(mock_settings):
    """Test the configured development user is used when the header is absent"""
    mock_settings.return_value = _settings(mock_user_email="dev.user@example.com")

    user = await get_current_user(MagicMock(headers={HEADER: ""}))

    assert user.email == "dev.user@example.com"


@patch("evcharge.features.auth.dependencies.get_global_settings")
async def test_header_wins_over_mock_user(mock_settings):
    """Test the platform header takes precedence over the development user"""
    mock_settings.return_value = _settings(mock_user_email="dev.user@example.com")

    user = await get_current_user(MagicMock(headers={HEADER: "ops@example.com"}))

    assert user.email == "ops@example.com"


@pytest.mark.parametrize(
    "email,name",
    [
        ("jane.doe@example.com", "Jane Doe"),
        ("ops@example.com", "Ops"),
        ("a.b.c@example.com", "A B C"),
    ],
)
def test_name_derived_from_email(email, name):
    """Test display names are derived from the email's local part"""
    assert AuthenticatedUser.from_email(email).name == name
