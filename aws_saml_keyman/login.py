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
"""The SAML to AWS login flow; an assertion goes in, AWS credentials come out.

Nothing in here talks to the terminal. Picking a role when there is more than
one to choose from is handed to a selector callable so the CLI can prompt the
user and tests can script the answers.
"""
import logging

from aws_saml_keyman import aws
from aws_saml_keyman.aws_saml import Error, SamlAssertion

LOG = logging.getLogger(__name__)


class InvalidSelection(Exception):
    """Raised by a role selector when the choice made can't be used."""


class SelectionAttemptsExceeded(Error):
    """Raised when no valid role was selected in the allowed attempts."""


class Login(object):
    """Log in to the IdP and swap the assertion for AWS credentials.

    Args:
        config: Config object; role_arn, region and duration are used
        provider: provider.Provider used to get the SAML assertion
        selector: Callable taking the list of AWSAccount and returning the
            AWSRole picked; raises InvalidSelection to be asked again
        max_selection_attempts: Int limit on selector calls, None to keep
            asking for as long as it takes
    """

    def __init__(self, config, provider, selector,
                 max_selection_attempts=None):
        self.config = config
        self.provider = provider
        self.selector = selector
        self.max_selection_attempts = max_selection_attempts

    def login(self, login_details):
        """Authenticate to the IdP and get AWS credentials.

        Returns: aws.AWSCredentials
        """
        self.provider.validate(login_details)
        LOG.info('Authenticating as {} ...'.format(login_details.username))
        assertion = self.provider.authenticate(login_details)
        return self.credentials(assertion)

    def credentials(self, assertion):
        """Pick the role and trade the assertion in for its credentials."""
        role = self.select_role(assertion)
        LOG.info('Selected role: {}'.format(role.role_arn))

        session = aws.Session(assertion,
                              region=self.config.region,
                              session_duration=self.config.duration)
        return session.assume_role(role)

    def select_role(self, assertion):
        """Get the roles out of the assertion and pick one."""
        saml = SamlAssertion(assertion)
        roles = saml.roles()
        if not roles:
            raise aws.NoRolesAvailable(
                'No roles to assume. Please check you are permitted to '
                'assume roles for the AWS service.')
        return self.resolve_role(roles, saml)

    def resolve_role(self, roles, assertion):
        """Decide which role to use.

        A single role is used as is; only when there is a choice to make do
        we go and ask AWS which accounts the roles belong to. A configured
        role ARN always wins over asking.

        Args:
            roles: List of AWSRole from the assertion
            assertion: aws_saml.SamlAssertion

        Returns: AWSRole
        """
        role_arn = self.config.role_arn

        if len(roles) == 1:
            if role_arn:
                return aws.locate_role(roles, role_arn)
            return roles[0]
        elif len(roles) == 0:
            raise aws.NoRolesAvailable('No roles available.')

        audience = assertion.destination_url()
        LOG.debug('SAML assertion destination: {}'.format(audience))

        accounts = aws.parse_accounts(audience, assertion.assertion)
        if len(accounts) == 0:
            raise aws.NoAccountsAvailable('No accounts available.')

        aws.assign_principals(roles, accounts)

        if role_arn:
            return aws.locate_role(roles, role_arn)

        accounts = [account for account in accounts if account.roles]
        if len(accounts) == 0:
            raise aws.NoAccountsAvailable(
                'No accounts list any of the roles in the SAML assertion.')
        return self.prompt_for_role(accounts)

    def prompt_for_role(self, accounts):
        """Keep asking the selector until it gives us a role."""
        attempts = 0
        while True:
            try:
                return self.selector(accounts)
            except InvalidSelection as err:
                attempts += 1
                LOG.warning('Error selecting role ({}). Try again.'.format(
                    err))
                if (self.max_selection_attempts is not None and
                        attempts >= self.max_selection_attempts):
                    raise SelectionAttemptsExceeded(
                        'Error resolving role: no valid selection after {} '
                        'attempts'.format(attempts)) from err
