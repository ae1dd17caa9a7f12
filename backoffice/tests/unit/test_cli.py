"""Tests for the command line server wiring."""

from unittest.mock import patch

import pytest

from backoffice import cli
from backoffice.cli import Run


class TestRunCommand:
    """Tests for `backoffice run`."""

    @pytest.mark.parametrize(
        ('no_reload', 'workers', 'expected_reload', 'expected_workers'),
        [
            (False, 4, True, 1),
            (True, 4, False, 4),
        ],
    )
    def test_reload_flag_reaches_granian(self, no_reload, workers, expected_reload, expected_workers):
        """Test --no-reload turns reloading off and only then honors --workers."""
        with patch('backoffice.cli.granian.Granian') as mock_granian, patch.object(cli, 'console'):
            Run(host='0.0.0.0', port=8100, no_reload=no_reload, workers=workers)()

        kwargs = mock_granian.call_args.kwargs
        assert kwargs['reload'] is expected_reload
        assert kwargs['workers'] == expected_workers
        assert (kwargs['address'], kwargs['port']) == ('0.0.0.0', 8100)
        mock_granian.return_value.serve.assert_called_once()
