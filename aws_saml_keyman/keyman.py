#!/usr/bin/env python
# -*- coding: UTF-8 -*-

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# Copyright 2018 Nextdoor.com, Inc
# Copyright 2018 Nathan V
"""This module contains the primary logic of the tool."""
import getpass
import logging
import subprocess
import sys
import traceback

import keyring

from aws_saml_keyman import aws, keycloak, provider
from aws_saml_keyman.aws_saml import Error
from aws_saml_keyman.config import Config
from aws_saml_keyman.login import InvalidSelection, Login
from aws_saml_keyman.metadata import __desc__, __version__


LOG = logging.getLogger(__name__)


class Keyman:
    """Main class for the tool."""

    def __init__(self, argv):
        self.provider = None
        self.login = None
        self.log = LOG
        self.log.info('{} 🔐 v{}'.format(__desc__, __version__))
        self.config = Config(argv)
        try:
            self.config.get_config()
        except ValueError as err:
            self.log.fatal(err)
            sys.exit(1)
        if self.config.debug:
            logging.getLogger().setLevel(logging.DEBUG)

    def main(self):
        """Execute primary logic path."""
        try:
            self.init_provider()
            creds = self.get_credentials()
            return self.wrap_up(creds)

        except aws.NoRolesAvailable as err:
            self.log.fatal('{} 🛑'.format(err))
            sys.exit(6)

        except aws.STSExchangeError as err:
            self.log.fatal('Error logging into AWS role using SAML '
                           'assertion: {}'.format(err))
            sys.exit(3)

        except aws.SerializationError as err:
            self.log.fatal('Error serializing credential process output: '
                           '{}'.format(err))
            sys.exit(4)

        except Error as err:
            self.log.fatal('Failed to assume role: {}'.format(err))
            sys.exit(2)

        except provider.UnknownError as err:
            self.log.fatal("Fatal error: {}".format(err))
            sys.exit(1)

        except KeyboardInterrupt:
            # Allow users to exit cleanly at any time.
            print('', file=sys.stderr)
            self.log.info('Exiting after keyboard interrupt. 🛑')
            sys.exit(1)

        except Exception as err:
            msg = '😬 Unhandled exception: {}'.format(err)
            self.log.fatal(msg)
            self.log.debug(traceback.format_exc())
            sys.exit(5)

    @staticmethod
    def user_input(text):
        """Wrap input() making testing easier.

        The prompt goes to stderr; stdout is kept for the credentials.
        """
        sys.stderr.write(text)
        sys.stderr.flush()
        return input().strip()

    def user_password(self):
        """Wrap getpass to simplify testing."""
        password = None
        if self.config.password_cache:
            self.log.debug('Password cache enabled')
            try:
                keyring.get_keyring()
                password = keyring.get_password('aws_saml_keyman',
                                                self.config.username)
            except keyring.errors.InitError:
                msg = 'Password cache enabled but no keyring available.'
                self.log.warning(msg)
                password = getpass.getpass()

            if self.config.password_reset or password is None:
                self.log.debug('Password not in cache or reset requested')
                password = getpass.getpass()
                keyring.set_password('aws_saml_keyman', self.config.username,
                                     password)
        else:
            password = getpass.getpass()
        return password

    @staticmethod
    def generate_template(data, header_map):
        """ Generates a string template for printing a table using the data and
        header to define the column names and widths

        Args:
        data: List of dicts; the data that will go in the table
        header_map: List of dicts with the header name to key map

        Returns: String template used for printing a padded table
        """
        widths = []
        for col in header_map:
            col_key = list(col.keys())[0]
            values = [row[col_key] for row in data]
            col_wid = max(len(value) + 2 for value in values)
            if len(col[col_key]) + 2 > col_wid:
                col_wid = len(col[col_key]) + 2
            widths.append([col_key, col_wid])
        template = ''
        for col in widths:
            template = "{}{{{}:{}}}".format(template, col[0], col[1])
        return template

    @staticmethod
    def generate_header(header_map):
        """ Generates a table header

        Args:
        header_map: List of dicts with the header name to key map

        Returns: Dict mapping data keys to column headers
        """
        header_dict = {}
        for col in header_map:
            header_dict.update(col)
        return header_dict

    @staticmethod
    def print_selector_table(template, header_map, data):
        """ Prints out a formatted table of data with headers and index
        numbers so that the user can be prompted to select a row as their
        response. The table goes to stderr.

        Args:
        template: String template used to print each row
        header_map: List of dicts containing the data key to column title map
        data: List of dicts where each dict is a row in the table
        """
        selector_width = len(str(len(data) - 1)) + 2
        pad = " " * (selector_width + 1)
        header_dict = Keyman.generate_header(header_map)
        print("\n{}{}".format(pad, template.format(**header_dict)),
              file=sys.stderr)
        for index, item in enumerate(data):
            sel = "[{}]".format(index).ljust(selector_width)
            print("{} {}".format(sel, str(template.format(**item))),
                  file=sys.stderr)

    def select_role(self, accounts):
        """Show the roles in each account and have the user pick one.

        This is the selector handed to login.Login; a single attempt, bad
        input raises InvalidSelection and Login asks again.

        Args:
        accounts: List of aws.AWSAccount with their roles

        Returns: aws_saml.AWSRole chosen
        """
        rows = []
        for account in accounts:
            for role in account.roles:
                rows.append({
                    'account': account.alias,
                    'account_id': account.account_id or '',
                    'role_name': role.name,
                    'role': role,
                })

        self.log.warning('Multiple AWS roles found; please select one')
        header = [{'account': 'Account'}, {'account_id': 'ID'},
                  {'role_name': 'Role'}]
        template = self.generate_template(rows, header)
        self.print_selector_table(template, header, rows)

        selection = self.user_input('Selection: ')
        try:
            index = int(selection)
        except ValueError:
            raise InvalidSelection('"{}" is not a number'.format(selection))
        if index < 0 or index >= len(rows):
            raise InvalidSelection('{} is not in the list'.format(index))

        print('', file=sys.stderr)
        return rows[index]['role']

    def init_provider(self):
        """Set up the IdP client and the login flow around it."""
        if self.config.assertion_file:
            self.provider = provider.AssertionFile(self.config.assertion_file)
        else:
            self.provider = keycloak.Keycloak()
        self.login = Login(self.config, self.provider, self.select_role,
                           max_selection_attempts=self.config.max_prompts)

    def get_credentials(self):
        """Authenticate to the IdP and get AWS credentials. Prompt for MFA if
        necessary.
        """
        password = None
        if not self.config.assertion_file:
            password = self.user_password()

        details = provider.LoginDetails(url=self.config.url,
                                        username=self.config.username,
                                        password=password)
        try:
            return self.login.login(details)
        except provider.EmptyInput:
            self.log.fatal('Cannot enter a blank string for any input')
            sys.exit(1)
        except provider.InvalidPassword:
            self.log.fatal('Invalid Username ({user}) or Password'.format(
                user=self.config.username
            ))
            if self.config.password_cache:
                msg = (
                    'Password cache is in use; use option -R to reset the '
                    'cached password with a new value'
                )
                self.log.warning(msg)
            sys.exit(1)
        except provider.PasscodeRequired as err:
            self.log.warning(
                "MFA Requirement Detected - Enter your {} code here".format(
                    err.provider
                )
            )
            assertion = None
            while not assertion:
                passcode = self.user_input('MFA Passcode: ')
                assertion = self.provider.submit_passcode(passcode)
            return self.login.credentials(assertion)

    def wrap_up(self, creds):
        """ Hand the credentials over the way the user asked for them

        Args:
        creds: aws.AWSCredentials
        """
        self.log.info('Assumed role: {}'.format(creds.principal_arn))

        if self.config.credential_process:
            aws.print_credential_process(creds)
        elif self.config.command:
            command_string = "{} {}".format(
                aws.export_creds_to_var_string(creds),
                self.config.command
            )
            self.log.info("Running requested command...\n\n")
            return subprocess.call(command_string, shell=True)
        else:
            print(aws.export_creds_to_var_string(creds))
            self.log.info('All done! 👍')
