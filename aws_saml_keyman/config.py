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
"""
Config module is a config object that handles passed-in args and an optional
local config file.
"""
import argparse
import getpass
import logging
import os
import sys

import yaml

from aws_saml_keyman.metadata import __version__

LOG = logging.getLogger(__name__)

DEFAULT_CONFIG = '~/.config/aws_saml_keyman.yml'
DEFAULT_REGION = 'us-east-1'
DEFAULT_DURATION = 3600


class Config:
    """Config class for all tool configuration settings."""

    def __init__(self, argv):
        self.argv = argv
        self.config = None
        self.writepath = DEFAULT_CONFIG
        self.url = None
        self.username = None
        self.assertion_file = None
        self.role_arn = None
        self.region = None
        self.duration = None
        self.max_prompts = None
        self.debug = None
        self.password_cache = None
        self.password_reset = None
        self.credential_process = None
        self.command = None

        if len(argv) > 1:
            if argv[1] == 'config':
                self.interactive_config()
                sys.exit(0)

    def validate(self):
        """Ensure we have all the settings we need before continuing."""
        if not self.url and not self.assertion_file:
            err = ("The parameter url must be provided in the config file "
                   "or as an argument")
            raise ValueError(err)

        if self.duration is None:
            self.duration = DEFAULT_DURATION
        elif self.duration > 43200 or self.duration < 900:
            err = ("The parameter duration must be between 900 and 43200 "
                   "(15m to 12h).")
            raise ValueError(err)

        if self.max_prompts is not None and self.max_prompts < 1:
            raise ValueError("The parameter max_prompts must be at least 1.")

        if self.region is None:
            self.region = DEFAULT_REGION

        if self.username is None:
            user = getpass.getuser()
            LOG.info(
                "No username provided; defaulting to current user '{}'".format(
                    user))
            self.username = user
        elif 'automatic-username' in self.username:
            self.username = self.username.replace('automatic-username',
                                                  getpass.getuser())

    def get_config(self):
        """Get the config and set everything up based on the args and/or local
        config file.
        """
        config_file = os.path.expanduser(DEFAULT_CONFIG)
        if '-w' in self.argv[1:] or '--writepath' in self.argv[1:]:
            self.parse_args()
            self.write_config()
        elif '-c' in self.argv[1:] or '--config' in self.argv[1:]:
            self.parse_args()
            self.parse_config(self.config)
        elif os.path.isfile(config_file):
            # If we haven't been told to write out the args and no filename is
            # given just use the default path
            self.parse_args()
            self.parse_config(config_file)
        else:
            # No default file, none specified; operate on args only
            self.parse_args()
        self.validate()

    @staticmethod
    def usage_epilog():
        """Epilog string for argparse."""
        epilog = (
            '** Login URL **\n'
            'The login URL is the IdP initiated SSO URL of the AWS client in\n'
            'Keycloak. For a realm named corp and a client named amazon-aws\n'
            'it looks like this:\n'
            '\n'
            '\thttps://sso.example.com/realms/corp/protocol/saml/clients/'
            'amazon-aws\n'
            '\n'
            '** Assertion File **\n'
            'If you already have a base64 encoded SAML assertion you can\n'
            'pass the file it is in (or - for stdin) instead of logging in.\n'
            '\n'
            '** Configuration File **\n'
            'AWS SAML Keyman can use a config file to pre-configure most of\n'
            'the settings needed for execution. The default location is \n'
            '\'~/.config/aws_saml_keyman.yml\' on Linux/Mac or for Windows \n'
            'it is \'$USERPROFILE\\.config\\aws_saml_keyman.yml\'\n\n'
            'To set up a basic config you can start aws_saml_keyman with '
            'the sole argument \nof config and it will prompt you for the '
            'basic config settings needed to get started\n')
        return epilog

    def parse_args(self):
        """Parse the CLI options and set them on this object."""
        arg_parser = argparse.ArgumentParser(
            prog=self.argv[0],
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=self.usage_epilog(),
            description="AWS SAML Keyman v{}".format(__version__))
        # Remove the default optional arguments section that always shows up.
        # It's not necessary, and can cause confusion.
        #   https://stackoverflow.com/questions/24180527/
        #   argparse-required-arguments-listed-under-optional-arguments
        arg_parser._action_groups.pop()

        main_args = arg_parser.add_argument_group('Login arguments or '
                                                  'settings')
        self.main_args(main_args)

        optional_args = arg_parser.add_argument_group('Optional arguments')
        self.optional_args(optional_args)

        config = arg_parser.parse_args(args=self.argv[1:])
        config_dict = vars(config)

        for key in config_dict:
            setattr(self, key, config_dict[key])

    @staticmethod
    def main_args(arg_group):
        """Handle primary arguments for the script; one of these is needed
        unless it is in the config file.
        """
        arg_group.add_argument('-l', '--url', type=str,
                               help=(
                                   'Keycloak IdP initiated SSO URL for the '
                                   'AWS client. See details below.'
                               ))
        arg_group.add_argument('-A', '--assertion_file', type=str,
                               help=(
                                   'Read a base64 encoded SAML assertion '
                                   'from this file (- for stdin) instead '
                                   'of logging in.'
                               ))

    @staticmethod
    def optional_args(optional_args):
        """Define the always-optional arguments."""
        optional_args.add_argument('-u', '--username', type=str,
                                   help=(
                                     'IdP Login Name - either '
                                     'bob@foobar.com, or just bob works too,'
                                     ' depending on your organization '
                                     'settings. Will use the current user if '
                                     'not specified.'
                                   ))
        optional_args.add_argument('-V', '--version', action='version',
                                   version=__version__)
        optional_args.add_argument('-D', '--debug', action='store_true',
                                   help=(
                                       'Enable DEBUG logging - note, this is '
                                       'extremely verbose and exposes '
                                       'credentials on the screen so be '
                                       'careful here!'
                                   ),
                                   default=False)
        optional_args.add_argument('-ro', '--role_arn', type=str,
                                   help=(
                                       'ARN of the AWS role to use when the '
                                       'assertion offers more than one. '
                                   ))
        optional_args.add_argument('-re', '--region', type=str,
                                   help=(
                                       'AWS region to use for calls. '
                                       'Required for GovCloud.'
                                   ))
        optional_args.add_argument('-du', '--duration', type=int,
                                   help=(
                                       'AWS API Key duration to request in '
                                       'seconds; 900 to 43200, default 3600.'
                                   ))
        optional_args.add_argument('-m', '--max_prompts', type=int,
                                   help=(
                                       'Give up after this many invalid '
                                       'role selections. Default is to '
                                       'keep asking.'
                                   ))
        optional_args.add_argument('-c', '--config', type=str,
                                   help='Config File path')
        optional_args.add_argument('-w', '--writepath', type=str,
                                   help='Full config file path to write to',
                                   default=DEFAULT_CONFIG)
        optional_args.add_argument('-P', '--password_cache',
                                   action='store_true', help=(
                                       'Use OS keyring to cache your password.'
                                   ),
                                   default=False)
        optional_args.add_argument('-R', '--password_reset',
                                   action='store_true', help=(
                                       'Reset your password in the cache. '
                                       'Use this to update the cached password'
                                       ' if it has changed or is incorrect.'
                                   ),
                                   default=False)
        optional_args.add_argument('-cp', '--credential_process',
                                   action='store_true', help=(
                                       'Print the keys as JSON for the AWS '
                                       'credential_process setting.'
                                   ),
                                   default=False)
        optional_args.add_argument('-C', '--command', type=str,
                                   help=(
                                        'Command to run with the requested '
                                        'AWS keys provided as environment '
                                        'variables.'
                                    ))

    @staticmethod
    def read_yaml(filename, raise_on_error=False):
        """Read a YAML file and optionally raise if anything goes wrong."""
        config = {}
        try:
            if os.path.isfile(filename):
                with open(filename, 'r') as config_file:
                    config = yaml.safe_load(config_file) or {}
                LOG.debug("YAML loaded config: {}".format(config))
            else:
                if raise_on_error:
                    raise IOError("File not found: {}".format(filename))
        except (yaml.parser.ParserError, yaml.scanner.ScannerError):
            LOG.error('Error parsing config file; invalid YAML.')
            if raise_on_error:
                raise
        return config

    def parse_config(self, filename):
        """Parse a configuration file and set the variables from it."""
        config = self.read_yaml(os.path.expanduser(filename),
                                raise_on_error=True)

        for key, value in config.items():
            if not getattr(self, key, None):  # Only overwrite None not args
                setattr(self, key, value)

    def write_config(self):
        """Use provided arguments and existing config to write an updated
        config file.
        """
        file_path = os.path.expanduser(self.writepath)
        config = self.read_yaml(file_path)

        args_dict = dict(vars(self))

        # Combine file data and user args with user args overwriting
        for key, value in config.items():
            setattr(self, key, value)
        for key in args_dict:
            if args_dict[key] is not None:
                setattr(self, key, args_dict[key])

        config_out = self.clean_config_for_write(dict(vars(self)))

        LOG.debug("YAML being saved: {}".format(config_out))

        file_folder = os.path.dirname(os.path.abspath(file_path))
        if not os.path.exists(file_folder):
            LOG.debug("Creating missing config file folder : {}".format(
                file_folder))
            os.makedirs(file_folder)

        with open(file_path, 'w') as outfile:
            yaml.safe_dump(config_out, outfile, default_flow_style=False)

    @staticmethod
    def clean_config_for_write(config):
        """Remove args we don't want to save to a config file."""
        ignore = ['argv', 'writepath', 'config', 'debug', 'password_reset',
                  'command', 'assertion_file', 'credential_process']
        for var in ignore:
            config.pop(var, None)

        return {key: value for key, value in config.items()
                if value is not None}

    @staticmethod
    def user_input(text):
        """Wrap input() to simplify testing."""
        return input(text).strip()

    def interactive_config(self):
        """ Runs an interactive configuration to make it simpler to create
        the config file. Always uses default path.
        """
        LOG.info('Interactive setup requested')

        try:
            print("\nWhat is the Keycloak SSO URL for your AWS client?")
            print("Example; https://sso.example.com/realms/corp/protocol/"
                  "saml/clients/amazon-aws\n")
            while not self.url:
                self.url = self.user_input('SSO URL: ')

            print("\nWhat is your Keycloak user name?")
            print("If it is {} you can leave this blank.\n".format(
                getpass.getuser()))
            self.username = self.user_input('Username: ')
            if self.username == '':
                self.username = 'automatic-username'

            print("\nWhich AWS role should be used when you have several?")
            print("Leave this blank to be asked each time.\n")
            self.role_arn = self.user_input('Role ARN: ') or None

            print("\nWhich AWS region should be used?")
            print("Leave this blank for {}.\n".format(DEFAULT_REGION))
            self.region = self.user_input('Region: ') or None

            self.write_config()
            print('')
            LOG.info('Config file written. Please rerun Keyman')
        except KeyboardInterrupt:
            print('')
            LOG.warning('User cancelled configuration; exiting')
