from __future__ import annotations

import smtplib
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from cmms.services.notification_service import send_email


def _settings(**overrides):
    values = {
        'email_enabled': True,
        'email_from': 'cmms@example.com',
        'smtp_host': 'smtp.example.com',
        'smtp_port': 587,
        'smtp_user': 'mailer',
        'smtp_password': 'secret',
        'smtp_timeout_seconds': 5,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class SendEmailTests(unittest.TestCase):
    def test_unconfigured_smtp_skips_delivery(self) -> None:
        with patch('cmms.services.notification_service.settings', _settings(email_enabled=False)), patch(
            'cmms.services.notification_service.smtplib.SMTP'
        ) as smtp_cls:
            self.assertFalse(send_email(to='tech@example.com', subject='Hi', body='Body'))
        smtp_cls.assert_not_called()

    def test_missing_recipient_skips_delivery(self) -> None:
        with patch('cmms.services.notification_service.settings', _settings()), patch(
            'cmms.services.notification_service.smtplib.SMTP'
        ) as smtp_cls:
            self.assertFalse(send_email(to=None, subject='Hi', body='Body'))
            self.assertFalse(send_email(to=['', None], subject='Hi', body='Body'))
        smtp_cls.assert_not_called()

    def test_connection_failure_is_swallowed(self) -> None:
        with patch('cmms.services.notification_service.settings', _settings()), patch(
            'cmms.services.notification_service.smtplib.SMTP',
            side_effect=OSError('connection refused'),
        ):
            self.assertFalse(send_email(to='tech@example.com', subject='Hi', body='Body'))

    def test_login_failure_is_swallowed(self) -> None:
        smtp = MagicMock()
        smtp.__enter__.return_value = smtp
        smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b'bad credentials')
        with patch('cmms.services.notification_service.settings', _settings()), patch(
            'cmms.services.notification_service.smtplib.SMTP',
            return_value=smtp,
        ):
            self.assertFalse(send_email(to='tech@example.com', subject='Hi', body='Body'))
        smtp.send_message.assert_not_called()

    def test_successful_delivery_sends_one_message(self) -> None:
        smtp = MagicMock()
        smtp.__enter__.return_value = smtp
        with patch('cmms.services.notification_service.settings', _settings()), patch(
            'cmms.services.notification_service.smtplib.SMTP',
            return_value=smtp,
        ) as smtp_cls:
            self.assertTrue(send_email(to=['a@example.com', 'b@example.com'], subject='Hi', body='Body'))

        smtp_cls.assert_called_once_with('smtp.example.com', 587, timeout=5)
        smtp.login.assert_called_once_with('mailer', 'secret')
        message = smtp.send_message.call_args.args[0]
        self.assertEqual(message['To'], 'a@example.com, b@example.com')
        self.assertEqual(message['From'], 'cmms@example.com')


if __name__ == '__main__':
    unittest.main()
