"""Tests for the health check endpoint."""

from unittest.mock import patch

import pytest
from django.urls import reverse


@pytest.mark.django_db
class TestHealthCheck:
    def test_healthy(self, client):
        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "channel_layer": "connected",
        }

    def test_channel_layer_missing_only_degrades(self, client):
        with patch("core.views.get_channel_layer", return_value=None):
            response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json()["channel_layer"] == "not_configured"

    def test_database_down(self, client):
        with patch("core.views.connection") as connection:
            connection.cursor.side_effect = Exception("connection refused")
            response = client.get(reverse("health_check"))

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
