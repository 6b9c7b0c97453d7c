from __future__ import annotations

from unittest.mock import MagicMock, patch

from qualiq.server import run_entrypoint


@patch("qualiq.server.uvicorn.run")
@patch("qualiq.server.create_http_app")
@patch("qualiq.server.configure_logging")
@patch("qualiq.server.load_settings")
def test_run_entrypoint_serves_http_app(mock_settings, mock_log, mock_create, mock_run):
    settings = MagicMock()
    settings.server.host = "0.0.0.0"
    settings.server.port = 8080
    settings.logging.file = None
    mock_settings.return_value = settings
    app = MagicMock()
    mock_create.return_value = app

    run_entrypoint()

    mock_log.assert_called_once_with(settings)
    mock_create.assert_called_once_with()
    mock_run.assert_called_once_with(app, host="0.0.0.0", port=8080, ws="none", log_config=None)
