"""Tests for GET /system-settings/environment endpoint."""

from ordercore.domain import HelpshipEnvironment, OrganizationSettings


def test_environment_defaults(auth_client):
    response = auth_client.get("/system-settings/environment")

    assert response.status_code == 200
    data = response.json()
    assert data["organization_id"] == "org_1"
    assert data["helpship_environment"] == "production"


def test_environment_from_organization_settings(auth_client, catalog):
    catalog.set_organization_settings(
        OrganizationSettings(
            organization_id="org_1",
            helpship_client_id="client",
            helpship_client_secret="secret",
            helpship_api_url="https://api.helpship.test/",
            helpship_environment=HelpshipEnvironment.DEVELOPMENT,
        )
    )

    response = auth_client.get("/system-settings/environment")

    assert response.status_code == 200
    data = response.json()
    assert data["helpship_environment"] == "development"
    assert data["helpship_api_url"] == "https://api.helpship.test"
    assert data["credentials_configured"] is True


def test_environment_requires_organization(client, auth_headers):
    response = client.get("/system-settings/environment", headers=auth_headers)

    assert response.status_code == 400
