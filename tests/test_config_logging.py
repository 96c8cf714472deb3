"""
Doc Medic Configuration, Logging and CLI Tests
==============================================
Validates environment configuration, error types, the structured logger
and the command line entry point.

Run with: python -m pytest tests/test_config_logging.py -v
"""

import io
import json
import logging
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch, MagicMock

from config_logging import (
    AppConfig, DocMedicError, FileError, JsonFormatter, LookupServiceError,
    ProcessingError, StructuredLogger, TextFormatter, ValidationError, VERSION,
    get_config, handle_errors, reset_config, set_config, validate_file_extension,
)
from doc_medic.__main__ import build_parser, format_summary, main, options_from_args
from doc_medic.models import ProcessSummary

from .conftest import DocBuilder


class TestAppConfig(unittest.TestCase):
    """Test configuration defaults, environment loading and validation."""

    def setUp(self):
        reset_config()

    def tearDown(self):
        reset_config()

    def test_defaults(self):
        """
        Test default configuration values.

        Expects: no lookup URL, one-hour cache, .docx only, at least one worker.
        """
        config = AppConfig()
        self.assertEqual(config.lookup_base_url, "")
        self.assertEqual(config.lookup_url, "")
        self.assertEqual(config.cache_ttl_seconds, 3600)
        self.assertEqual(config.allowed_extensions, ('.docx',))
        self.assertGreaterEqual(config.max_workers, 1)
        self.assertTrue(config.validate()[0])

    def test_lookup_url_joins_path(self):
        config = AppConfig(lookup_base_url="https://api.example.com/", lookup_path="/lookup")
        self.assertEqual(config.lookup_url, "https://api.example.com/lookup")

    @patch.dict(os.environ, {
        'DOCMEDIC_LOOKUP_BASE_URL': 'https://lookup.example.com',
        'DOCMEDIC_LOOKUP_RETRIES': '5',
        'DOCMEDIC_MAX_WORKERS': '2',
        'DOCMEDIC_LOG_FORMAT': 'json',
    })
    def test_from_env(self):
        """
        Test environment variables override defaults.

        Expects: DOCMEDIC_* variables are read into the config.
        """
        config = AppConfig.from_env()
        self.assertEqual(config.lookup_base_url, 'https://lookup.example.com')
        self.assertEqual(config.lookup_retries, 5)
        self.assertEqual(config.max_workers, 2)
        self.assertEqual(config.log_format, 'json')

    @patch.dict(os.environ, {'DOCMEDIC_ENV': 'production'})
    def test_production_quiets_logging(self):
        self.assertEqual(AppConfig().log_level, "WARNING")

    def test_validate_reports_errors(self):
        config = AppConfig(lookup_base_url="ftp://x", lookup_timeout=0,
                           lookup_retries=-1, max_workers=0, log_format='xml')
        is_valid, errors = config.validate()
        self.assertFalse(is_valid)
        self.assertEqual(len(errors), 5)

    @patch.dict(os.environ, {'DOCMEDIC_BREAKER_THRESHOLD': '5', 'DOCMEDIC_BREAKER_SECONDS': '30'})
    def test_breaker_settings(self):
        config = AppConfig.from_env()
        self.assertEqual(config.breaker_threshold, 5)
        self.assertEqual(config.breaker_open_seconds, 30)

        is_valid, errors = AppConfig(breaker_threshold=0, breaker_open_seconds=-1).validate()
        self.assertFalse(is_valid)
        self.assertEqual(len(errors), 2)

    def test_set_and_reset_config(self):
        custom = AppConfig(lookup_base_url="https://x")
        set_config(custom)
        self.assertIs(get_config(), custom)
        reset_config()
        self.assertIsNot(get_config(), custom)


class TestErrorTypes(unittest.TestCase):
    """Test error classes and the handle_errors decorator."""

    def test_validation_error_structure(self):
        """
        Test ValidationError report format.

        Expects: success False, VALIDATION_ERROR code and the field in details.
        """
        error = ValidationError("bad id", field='document_id')
        data = error.to_dict()
        self.assertFalse(data['success'])
        self.assertEqual(data['error']['code'], 'VALIDATION_ERROR')
        self.assertEqual(data['error']['details']['field'], 'document_id')
        self.assertEqual(error.field, 'document_id')

    def test_error_codes(self):
        self.assertEqual(FileError("x", filename="a.docx").code, 'FILE_ERROR')
        self.assertEqual(ProcessingError("x", stage='repair').details['stage'], 'repair')
        lookup_error = LookupServiceError("x", status_code=503)
        self.assertEqual(lookup_error.code, 'LOOKUP_ERROR')
        self.assertEqual(lookup_error.status_code, 503)
        self.assertIsInstance(lookup_error, DocMedicError)

    def test_handle_errors_converts_exceptions(self):
        quiet = MagicMock()

        @handle_errors(quiet)
        def missing():
            raise FileNotFoundError(2, "No such file", "a.docx")

        @handle_errors(quiet)
        def bad_value():
            raise ValueError("bad")

        @handle_errors(quiet)
        def crash():
            raise RuntimeError("boom")

        with self.assertRaises(FileError):
            missing()
        with self.assertRaises(ValidationError):
            bad_value()
        with self.assertRaises(ProcessingError) as ctx:
            crash()
        self.assertEqual(ctx.exception.details['stage'], 'crash')

    def test_handle_errors_passes_own_errors_through(self):
        @handle_errors(MagicMock())
        def fails():
            raise LookupServiceError("down", status_code=500)

        with self.assertRaises(LookupServiceError):
            fails()

    def test_validate_file_extension(self):
        self.assertTrue(validate_file_extension("Policy.DOCX"))
        self.assertFalse(validate_file_extension("policy.doc"))
        self.assertFalse(validate_file_extension("policy.docx.bak"))


class TestStructuredLogging(unittest.TestCase):
    """Test formatters and correlation ids."""

    def _record(self, **context):
        record = logging.LogRecord('doc_medic.test', logging.INFO, __file__, 1,
                                   'Repaired %d hyperlinks', (3,), None)
        record.correlation_id = 'abc123'
        record.context = context
        return record

    def test_json_formatter(self):
        data = json.loads(JsonFormatter().format(self._record(path='a.docx')))
        self.assertEqual(data['message'], 'Repaired 3 hyperlinks')
        self.assertEqual(data['correlation_id'], 'abc123')
        self.assertEqual(data['path'], 'a.docx')
        self.assertEqual(data['level'], 'INFO')

    def test_text_formatter_appends_context(self):
        text = TextFormatter('%(message)s').format(self._record(path='a.docx'))
        self.assertEqual(text, 'Repaired 3 hyperlinks | path=a.docx')

    def test_correlation_id_per_thread(self):
        correlation_id = StructuredLogger.new_correlation_id()
        self.assertEqual(StructuredLogger.get_correlation_id(), correlation_id)

    def test_log_operation_reraises(self):
        logger = StructuredLogger('doc_medic.test', AppConfig(log_to_console=False))
        with self.assertRaises(RuntimeError):
            with logger.log_operation('explode'):
                raise RuntimeError("boom")


class TestCommandLine(unittest.TestCase):
    """Test the doc_medic command line."""

    def setUp(self):
        reset_config()
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()
        reset_config()

    def _run(self, argv):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(argv)
        return code, out.getvalue()

    def test_options_from_flags(self):
        args = build_parser().parse_args(['process', 'a.docx', '--no-styles', '--no-backup'])
        options = options_from_args(args)
        self.assertFalse(options.standardize_styles)
        self.assertFalse(options.create_backup)
        self.assertTrue(options.center_images)

    def test_no_command_prints_help(self):
        code, out = self._run([])
        self.assertEqual(code, 2)
        self.assertIn('usage', out.lower())

    def test_index_command(self):
        """
        Test the index subcommand.

        Expects: JSON hyperlink index of the document on stdout.
        """
        builder = DocBuilder()
        builder.external_link("http://old?docid=ABC", "Policy")
        path = self.dir / "policy.docx"
        builder.document.save(str(path))

        code, out = self._run(['index', str(path)])

        self.assertEqual(code, 0)
        data = json.loads(out)
        self.assertEqual(data['count'], 1)
        self.assertEqual(data['lookup_ids'], ['ABC'])

    def test_index_command_rejects_other_files(self):
        with redirect_stdout(io.StringIO()), patch('sys.stderr', new_callable=io.StringIO) as err:
            code = main(['index', str(self.dir / "notes.txt")])
        self.assertEqual(code, 1)
        self.assertEqual(json.loads(err.getvalue())['error']['code'], 'VALIDATION_ERROR')

    def test_process_command_json(self):
        DocBuilder().document.save(str(self.dir / "empty.docx"))

        code, out = self._run(['process', str(self.dir), '--json', '--no-styles',
                               '--workers', '1'])

        self.assertEqual(code, 0)
        data = json.loads(out)
        self.assertEqual(data['files_processed'], 1)
        self.assertEqual(data['files_changed'], 0)

    def test_process_missing_file_fails(self):
        code, out = self._run(['process', str(self.dir / "missing.docx")])
        self.assertEqual(code, 1)
        self.assertIn('ERROR:', out)

    def test_lookup_url_override(self):
        self._run(['--lookup-url', 'https://lookup.example.com', 'process',
                   str(self.dir), '--no-styles'])
        self.assertEqual(get_config().lookup_base_url, 'https://lookup.example.com')

    def test_format_summary(self):
        summary = ProcessSummary(files_processed=2, errors=["bad"]).finish()
        text = format_summary(summary)
        self.assertIn("Files processed:        2", text)
        self.assertIn("ERROR: bad", text)

    def test_version_string(self):
        self.assertRegex(VERSION, r'^\d+\.\d+\.\d+$')


if __name__ == '__main__':
    unittest.main()
