# -*- coding: UTF-8 -*-
import datetime
import logging
import unittest
from unittest import mock

import keyring

from aws_saml_keyman import aws, provider
from aws_saml_keyman.aws_saml import AWSRole, RoleParseError
from aws_saml_keyman.keyman import Keyman
from aws_saml_keyman.login import InvalidSelection, SelectionAttemptsExceeded


def credentials():
    return aws.AWSCredentials(
        access_key='AKIA123',
        secret_key='secret',
        session_token='token',
        security_token='token',
        principal_arn='arn:aws:sts::111:assumed-role/Dev/alice',
        expires=datetime.datetime(2026, 1, 1, 12,
                                  tzinfo=datetime.timezone.utc),
        region='us-east-1')


def accounts():
    dev = aws.AWSAccount('Account: my-dev (123456)', [
        AWSRole('arn:aws:iam::123456:role/admin', name='admin',
                account='Account: my-dev (123456)'),
        AWSRole('arn:aws:iam::123456:role/ReadOnly', name='ReadOnly',
                account='Account: my-dev (123456)'),
    ])
    prod = aws.AWSAccount('Account: my-prod (123457)', [
        AWSRole('arn:aws:iam::123457:role/admin', name='admin',
                account='Account: my-prod (123457)'),
    ])
    return [dev, prod]


class KeymanTest(unittest.TestCase):

    def setUp(self):
        self.root_level = logging.getLogger().level

    def tearDown(self):
        logging.getLogger().setLevel(self.root_level)

    @staticmethod
    def keyman(config_mock, **settings):
        config = config_mock.return_value
        config.debug = False
        config.assertion_file = None
        config.password_cache = False
        config.credential_process = False
        config.command = None
        config.max_prompts = None
        for key, value in settings.items():
            setattr(config, key, value)
        return Keyman(['foo', '-l', 'https://sso', '-u', 'bar'])

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_init_blank_args(self, config_mock):
        keyman = self.keyman(config_mock)

        assert isinstance(keyman, Keyman)
        config_mock.return_value.get_config.assert_called_once_with()

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_init_use_debug(self, config_mock):
        keyman = self.keyman(config_mock, debug=True)

        log_level = logging.getLevelName(keyman.log.getEffectiveLevel())

        self.assertEqual('DEBUG', log_level)

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_init_bad_config(self, config_mock):
        config_mock().get_config.side_effect = ValueError

        with self.assertRaises(SystemExit) as ctx:
            Keyman([])
        self.assertEqual(ctx.exception.code, 1)

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_main(self, config_mock):
        keyman = self.keyman(config_mock)
        keyman.init_provider = mock.MagicMock()
        keyman.get_credentials = mock.MagicMock()
        keyman.wrap_up = mock.MagicMock()
        keyman.wrap_up.return_value = None

        self.assertEqual(keyman.main(), None)

        assert keyman.init_provider.called
        keyman.wrap_up.assert_called_once_with(
            keyman.get_credentials.return_value)

    def main_exit_code(self, config_mock, error):
        keyman = self.keyman(config_mock)
        keyman.init_provider = mock.MagicMock()
        keyman.get_credentials = mock.MagicMock()
        keyman.get_credentials.side_effect = error

        with self.assertRaises(SystemExit) as ctx:
            keyman.main()
        return ctx.exception.code

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_main_no_roles(self, config_mock):
        code = self.main_exit_code(config_mock,
                                   aws.NoRolesAvailable('No roles'))
        self.assertEqual(code, 6)

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_main_sts_error(self, config_mock):
        code = self.main_exit_code(config_mock,
                                   aws.STSExchangeError('denied'))
        self.assertEqual(code, 3)

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_main_serialization_error(self, config_mock):
        keyman = self.keyman(config_mock)
        keyman.init_provider = mock.MagicMock()
        keyman.get_credentials = mock.MagicMock()
        keyman.wrap_up = mock.MagicMock()
        keyman.wrap_up.side_effect = aws.SerializationError('bad expiry')
        keyman.log = mock.MagicMock()

        with self.assertRaises(SystemExit) as ctx:
            keyman.main()

        self.assertEqual(ctx.exception.code, 4)
        keyman.log.fatal.assert_called_once_with(
            'Error serializing credential process output: bad expiry')

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_main_role_errors(self, config_mock):
        for error in (RoleParseError('bad'), aws.RoleNotFound('nope'),
                      aws.NoAccountsAvailable('none'),
                      SelectionAttemptsExceeded('tired')):
            self.assertEqual(self.main_exit_code(config_mock, error), 2)

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_main_idp_error(self, config_mock):
        code = self.main_exit_code(config_mock,
                                   provider.UnknownError('oops'))
        self.assertEqual(code, 1)

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_main_keyboard_interrupt(self, config_mock):
        code = self.main_exit_code(config_mock, KeyboardInterrupt)
        self.assertEqual(code, 1)

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_main_unhandled_exception(self, config_mock):
        code = self.main_exit_code(config_mock, Exception())
        self.assertEqual(code, 5)

    @mock.patch('aws_saml_keyman.keyman.sys.stderr')
    @mock.patch('aws_saml_keyman.keyman.input')
    def test_user_input(self, input_mock, stderr_mock):
        input_mock.return_value = ' test '

        self.assertEqual('test', Keyman.user_input('input test'))
        stderr_mock.write.assert_called_once_with('input test')
        input_mock.assert_called_once_with()

    @mock.patch('aws_saml_keyman.keyman.Config')
    @mock.patch('aws_saml_keyman.keyman.getpass')
    def test_user_password_no_cache(self, pass_mock, config_mock):
        keyman = self.keyman(config_mock)
        pass_mock.getpass.return_value = 'test'

        self.assertEqual('test', keyman.user_password())

    @mock.patch('aws_saml_keyman.keyman.keyring.get_password')
    @mock.patch('aws_saml_keyman.keyman.keyring.get_keyring')
    @mock.patch('aws_saml_keyman.keyman.Config')
    @mock.patch('aws_saml_keyman.keyman.getpass')
    def test_user_password_cache_unavailable(self, pass_mock, config_mock,
                                             keyring_kr_mock, keyring_pw_mock):
        keyman = self.keyman(config_mock, password_cache=True,
                             password_reset=False)
        keyring_kr_mock.side_effect = keyring.errors.InitError
        pass_mock.getpass.return_value = 'test'

        with mock.patch('aws_saml_keyman.keyman.keyring.set_password'):
            self.assertEqual('test', keyman.user_password())
        assert not keyring_pw_mock.called

    @mock.patch('aws_saml_keyman.keyman.keyring.get_password')
    @mock.patch('aws_saml_keyman.keyman.keyring.get_keyring')
    @mock.patch('aws_saml_keyman.keyman.Config')
    @mock.patch('aws_saml_keyman.keyman.getpass')
    def test_user_password_cache_get_success(self, pass_mock, config_mock,
                                             keyring_kr_mock, keyring_pw_mock):
        keyman = self.keyman(config_mock, password_cache=True,
                             password_reset=False)
        keyring_pw_mock.return_value = 'test'

        self.assertEqual('test', keyman.user_password())
        assert not pass_mock.getpass.called

    @mock.patch('aws_saml_keyman.keyman.keyring.set_password')
    @mock.patch('aws_saml_keyman.keyman.keyring.get_password')
    @mock.patch('aws_saml_keyman.keyman.keyring.get_keyring')
    @mock.patch('aws_saml_keyman.keyman.Config')
    @mock.patch('aws_saml_keyman.keyman.getpass')
    def test_user_password_cache_get_empty(self, pass_mock, config_mock,
                                           keyring_kr_mock, keyring_pw_mock,
                                           keyring_setpw_mock):
        keyman = self.keyman(config_mock, password_cache=True,
                             password_reset=False)
        keyring_pw_mock.return_value = None
        pass_mock.getpass.return_value = 'test'

        self.assertEqual('test', keyman.user_password())
        keyring_setpw_mock.assert_has_calls([
            mock.call('aws_saml_keyman', mock.ANY, 'test')
        ])

    def test_generate_template_long_data(self):
        header = [{'account': 'Account'}, {'role_name': 'Role'}]
        data = [
            {'account': 'my-dev (123456)', 'role_name': 'admin'},
            {'account': 'my-prod (123457)', 'role_name': 'ReadOnlyAccess'}
        ]
        ret = Keyman.generate_template(data, header)

        self.assertEqual(ret, '{account:18}{role_name:16}')

    def test_generate_template_long_header(self):
        header = [{'account': 'Full Account Name'}, {'role_name': 'Role'}]
        data = [
            {'account': 'dev', 'role_name': 'ops'},
            {'account': 'prod', 'role_name': 'ro'}
        ]
        ret = Keyman.generate_template(data, header)

        self.assertEqual(ret, '{account:19}{role_name:6}')

    def test_generate_header(self):
        source = [{'account': 'Account'}, {'role_name': 'Role'}]
        output = {'account': 'Account', 'role_name': 'Role'}

        self.assertEqual(Keyman.generate_header(source), output)

    @mock.patch('sys.stderr')
    def test_print_selector_table(self, stderr_mock):
        data = [
            {'account': 'my-dev (123456)', 'role_name': 'admin'},
            {'account': 'my-prod (123457)', 'role_name': 'ReadOnly'}
        ]
        header = [{'account': 'Account'}, {'role_name': 'Role'}]
        template = '{account:18}{role_name:10}'

        Keyman.print_selector_table(template, header, data)

        stderr_mock.assert_has_calls([
            mock.call.write('\n    Account           Role      '),
            mock.call.write('\n'),
            mock.call.write('[0] my-dev (123456)   admin     '),
            mock.call.write('\n'),
            mock.call.write('[1] my-prod (123457)  ReadOnly  '),
            mock.call.write('\n')
        ])

    @mock.patch('aws_saml_keyman.keyman.Keyman.print_selector_table')
    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_select_role(self, config_mock, table_mock):
        keyman = self.keyman(config_mock)
        keyman.user_input = mock.MagicMock()
        keyman.user_input.return_value = '2'

        with mock.patch('sys.stderr'):
            ret = keyman.select_role(accounts())

        self.assertEqual(ret.role_arn, 'arn:aws:iam::123457:role/admin')
        keyman.user_input.assert_called_once_with('Selection: ')
        rows = table_mock.call_args[0][2]
        self.assertEqual([row['account'] for row in rows],
                         ['my-dev', 'my-dev', 'my-prod'])
        self.assertEqual([row['account_id'] for row in rows],
                         ['123456', '123456', '123457'])
        self.assertEqual([row['role_name'] for row in rows],
                         ['admin', 'ReadOnly', 'admin'])

    @mock.patch('aws_saml_keyman.keyman.Keyman.print_selector_table')
    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_select_role_account_without_alias(self, config_mock, table_mock):
        keyman = self.keyman(config_mock)
        keyman.user_input = mock.MagicMock()
        keyman.user_input.return_value = '0'
        role = AWSRole('arn:aws:iam::123458:role/admin', name='admin',
                       account='Account: 123458')

        with mock.patch('sys.stderr'):
            ret = keyman.select_role(
                [aws.AWSAccount('Account: 123458', [role])])

        self.assertEqual(ret, role)
        template, _, rows = table_mock.call_args[0]
        self.assertEqual(rows[0]['account'], '123458')
        self.assertEqual(rows[0]['account_id'], '123458')
        self.assertEqual(template, '{account:9}{account_id:8}{role_name:7}')

    @mock.patch('aws_saml_keyman.keyman.Keyman.print_selector_table')
    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_select_role_not_a_number(self, config_mock, _table_mock):
        keyman = self.keyman(config_mock)
        keyman.user_input = mock.MagicMock()
        keyman.user_input.return_value = 'admin'

        with self.assertRaises(InvalidSelection):
            keyman.select_role(accounts())

    @mock.patch('aws_saml_keyman.keyman.Keyman.print_selector_table')
    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_select_role_out_of_range(self, config_mock, _table_mock):
        keyman = self.keyman(config_mock)
        keyman.user_input = mock.MagicMock()

        for selection in ('3', '-1'):
            keyman.user_input.return_value = selection
            with self.assertRaises(InvalidSelection):
                keyman.select_role(accounts())

    @mock.patch('aws_saml_keyman.keyman.Login')
    @mock.patch('aws_saml_keyman.keyman.keycloak.Keycloak')
    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_init_provider(self, config_mock, keycloak_mock, login_mock):
        keyman = self.keyman(config_mock, max_prompts=3)

        keyman.init_provider()

        self.assertEqual(keyman.provider, keycloak_mock.return_value)
        login_mock.assert_called_once_with(
            keyman.config, keycloak_mock.return_value, keyman.select_role,
            max_selection_attempts=3)

    @mock.patch('aws_saml_keyman.keyman.Login')
    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_init_provider_assertion_file(self, config_mock, _login_mock):
        keyman = self.keyman(config_mock, assertion_file='-')

        keyman.init_provider()

        assert isinstance(keyman.provider, provider.AssertionFile)
        self.assertEqual(keyman.provider.path, '-')

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_get_credentials(self, config_mock):
        keyman = self.keyman(config_mock, url='https://sso', username='bar')
        keyman.user_password = mock.MagicMock()
        keyman.user_password.return_value = 'pw'
        keyman.login = mock.MagicMock()

        ret = keyman.get_credentials()

        self.assertEqual(ret, keyman.login.login.return_value)
        details = keyman.login.login.call_args[0][0]
        self.assertEqual(details.url, 'https://sso')
        self.assertEqual(details.username, 'bar')
        self.assertEqual(details.password, 'pw')

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_get_credentials_assertion_file(self, config_mock):
        keyman = self.keyman(config_mock, assertion_file='saml.txt')
        keyman.user_password = mock.MagicMock()
        keyman.login = mock.MagicMock()

        keyman.get_credentials()

        assert not keyman.user_password.called
        self.assertEqual(keyman.login.login.call_args[0][0].password, None)

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_get_credentials_empty_input(self, config_mock):
        keyman = self.keyman(config_mock)
        keyman.user_password = mock.MagicMock()
        keyman.login = mock.MagicMock()
        keyman.login.login.side_effect = provider.EmptyInput

        with self.assertRaises(SystemExit) as ctx:
            keyman.get_credentials()
        self.assertEqual(ctx.exception.code, 1)

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_get_credentials_bad_password(self, config_mock):
        keyman = self.keyman(config_mock, password_cache=True)
        keyman.user_password = mock.MagicMock()
        keyman.login = mock.MagicMock()
        keyman.login.login.side_effect = provider.InvalidPassword
        keyman.log = mock.MagicMock()

        with self.assertRaises(SystemExit) as ctx:
            keyman.get_credentials()
        self.assertEqual(ctx.exception.code, 1)
        assert keyman.log.warning.called

    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_get_credentials_mfa(self, config_mock):
        keyman = self.keyman(config_mock)
        keyman.user_password = mock.MagicMock()
        keyman.user_input = mock.MagicMock()
        keyman.user_input.side_effect = ['', '000000', '123456']
        keyman.provider = mock.MagicMock()
        keyman.provider.submit_passcode.side_effect = [None, None, 'PHNhbWw+']
        keyman.login = mock.MagicMock()
        keyman.login.login.side_effect = provider.PasscodeRequired(
            'Keycloak OTP')

        ret = keyman.get_credentials()

        self.assertEqual(ret, keyman.login.credentials.return_value)
        keyman.provider.submit_passcode.assert_has_calls([
            mock.call(''),
            mock.call('000000'),
            mock.call('123456'),
        ])
        keyman.login.credentials.assert_called_once_with('PHNhbWw+')

    @mock.patch('builtins.print')
    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_wrap_up_noop(self, config_mock, print_mock):
        keyman = self.keyman(config_mock)
        keyman.log = mock.MagicMock()

        keyman.wrap_up(credentials())

        print_mock.assert_called_once_with(
            aws.export_creds_to_var_string(credentials()))
        keyman.log.assert_has_calls([
            mock.call.info('All done! 👍')
        ])

    @mock.patch('aws_saml_keyman.keyman.aws.print_credential_process')
    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_wrap_up_credential_process(self, config_mock, print_mock):
        keyman = self.keyman(config_mock, credential_process=True)

        keyman.wrap_up(credentials())

        print_mock.assert_called_once_with(credentials())

    @mock.patch('aws_saml_keyman.keyman.subprocess')
    @mock.patch('aws_saml_keyman.keyman.Config')
    def test_wrap_up_with_command(self, config_mock, subprocess_mock):
        keyman = self.keyman(config_mock, command='echo w00t')
        subprocess_mock.call.return_value = 3

        ret = keyman.wrap_up(credentials())

        self.assertEqual(ret, 3)
        subprocess_mock.call.assert_called_once_with(
            '{} echo w00t'.format(
                aws.export_creds_to_var_string(credentials())),
            shell=True)
