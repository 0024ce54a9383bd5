# -*- coding: utf-8 -*-
#
# Credits: Portions of this code were copied/modified from
# https://github.com/ThoughtWorksInc/aws_role_credentials
#
# Copyright (c) 2015, Peter Gillard-Moss
# All rights reserved.

# Permission to use, copy, modify, and/or distribute this software for any
# purpose with or without fee is hereby granted, provided that the above
# copyright notice and this permission notice appear in all copies.

# THE SOFTWARE IS PROVIDED "AS IS" AND THE AUTHOR DISCLAIMS ALL WARRANTIES
# WITH REGARD TO THIS SOFTWARE INCLUDING ALL IMPLIED WARRANTIES OF
# MERCHANTABILITY AND FITNESS. IN NO EVENT SHALL THE AUTHOR BE LIABLE FOR
# ANY SPECIAL, DIRECT, INDIRECT, OR CONSEQUENTIAL DAMAGES OR ANY DAMAGES
# WHATSOEVER RESULTING FROM LOSS OF USE, DATA OR PROFITS, WHETHER IN AN
# ACTION OF CONTRACT, NEGLIGENCE OR OTHER TORTIOUS ACTION, ARISING OUT OF
# OR IN CONNECTION WITH THE USE OR PERFORMANCE OF THIS SOFTWARE.
"""
AWS Session and Credential classes; how we find out which accounts our roles
live in, how we talk to AWS to get the creds and how we hand them back.
"""
import collections
import json
import logging
import re

import boto3
import botocore.exceptions
import bs4
import requests

from aws_saml_keyman.aws_saml import (ARN, AWSRole, AccountResolutionError,
                                      Error)

LOG = logging.getLogger(__name__)


class NoRolesAvailable(Error):
    """Raised when the assertion doesn't grant any AWS roles."""


class NoAccountsAvailable(Error):
    """Raised when AWS doesn't list any accounts for the assertion."""


class RoleNotFound(Error):
    """Raised when the requested role isn't one the assertion grants."""


class STSExchangeError(Error):
    """Raised when STS won't swap the assertion for credentials."""


class SerializationError(Error):
    """Raised when credentials can't be turned into credential_process JSON."""


AWSCredentials = collections.namedtuple('AWSCredentials', [
    'access_key',
    'secret_key',
    'session_token',
    'security_token',
    'principal_arn',
    'expires',
    'region',
])


class AWSAccount(object):
    """An AWS account as listed on the AWS SAML sign-in page."""

    def __init__(self, name, roles=None):
        self.name = name
        self.roles = roles or []

    @property
    def account_id(self):
        """Return the account number from a name like 'Account: foo (123)'."""
        match = re.search(r'(\d+)\)?$', self.name)
        if match:
            return match.group(1)
        return None

    @property
    def alias(self):
        """Return the friendly account alias, or the name if there is none."""
        match = re.match(r'\S+\s(\S+)', self.name)
        if match:
            return match.group(1)
        return self.name

    def __repr__(self):
        return 'AWSAccount(name={!r}, roles={!r})'.format(self.name,
                                                          self.roles)


def _account_or_role(tag):
    """Match account name divs and role labels on the AWS sign-in page."""
    if tag.name == 'div':
        return 'saml-account-name' in tag.get('class', [])
    if tag.name == 'label' and tag.has_attr('for'):
        return tag.find_parent('div', class_='saml-role') is not None
    return False


def accounts_from_html(html):
    """Parse the AWS SAML login page HTML for accounts and their roles.

    Roles are listed after the account they belong to; depending on the page
    version they are either nested in or siblings of the account block, so we
    walk the page in document order.

    Returns: List of AWSAccount
    """
    accounts = []
    soup = bs4.BeautifulSoup(html, 'html.parser')
    for tag in soup.find_all(_account_or_role):
        if tag.name == 'div':
            accounts.append(AWSAccount(tag.get_text().strip()))
            continue

        role_arn = tag['for'].strip()
        if not ARN.match(role_arn):
            raise AccountResolutionError(
                'Error parsing AWS role accounts: invalid role "{}"'.format(
                    role_arn))
        if not accounts:
            LOG.debug('Role {} listed outside of an account'.format(role_arn))
            continue
        accounts[-1].roles.append(AWSRole(role_arn,
                                          name=tag.get_text().strip(),
                                          account=accounts[-1].name))

    LOG.debug("AWS accounts: {}".format(accounts))
    return accounts


def parse_accounts(audience_url, assertion):
    """Get the accounts and role names from AWS via hacktastic HTML.

    Args:
        audience_url: Where the assertion is destined; the AWS SAML sign-in
        assertion: Base64 encoded SAML assertion

    Returns: List of AWSAccount
    """
    headers = {'Content-Type': 'application/x-www-form-urlencoded'}
    data = {'SAMLResponse': assertion}
    try:
        resp = requests.post(url=audience_url, headers=headers, data=data)
        resp.raise_for_status()
    except requests.exceptions.RequestException as err:
        raise AccountResolutionError(
            'Error parsing AWS role accounts: {}'.format(err)) from err
    return accounts_from_html(resp.text)


def assign_principals(roles, accounts):
    """Tie the roles from the assertion and the accounts from AWS together.

    Account roles get the principal ARN from the assertion; assertion roles
    get the name of their account. Roles AWS lists that the assertion doesn't
    grant are dropped from the accounts.

    Args:
        roles: List of AWSRole from the assertion, updated in place
        accounts: List of AWSAccount, updated in place
    """
    by_arn = {role.role_arn: role for role in roles}
    for account in accounts:
        assigned = []
        for account_role in account.roles:
            role = by_arn.get(account_role.role_arn)
            if role is None:
                LOG.debug('{} is not in the assertion; skipping'.format(
                    account_role.role_arn))
                continue
            account_role.principal_arn = role.principal_arn
            role.account = account.name
            role.name = account_role.name
            assigned.append(account_role)
        account.roles = assigned


def locate_role(roles, role_arn):
    """Find the role with exactly this ARN."""
    for role in roles:
        if role.role_arn == role_arn:
            return role
    raise RoleNotFound(
        'Supplied role ARN not found in SAML assertion: {}'.format(role_arn))


class Session(object):
    """Amazon Federated Session Generator.

    This class is used to contact Amazon with a specific SAML Assertion and
    get back a set of temporary Federated credentials.

    This object is meant to be used once -- as SAML Assertions are one-time-use
    objects.
    """

    def __init__(self, assertion, region='us-east-1', session_duration=3600):
        boto_logger = logging.getLogger('botocore')
        boto_logger.setLevel(logging.WARNING)

        self.assertion = assertion
        self.region = region
        self.duration = session_duration
        try:
            self.sts = boto3.client('sts', region_name=self.region)
        except botocore.exceptions.BotoCoreError as err:
            raise STSExchangeError(
                'Failed to create AWS session: {}'.format(err)) from err

    def assume_role(self, role):
        """Use the SAML Assertion to actually get the credentials.

        Uses the supplied (one time use!) SAML Assertion to go out to Amazon
        and get back a set of temporary credentials for the role. There is
        exactly one attempt; a rejected duration is not retried.

        Returns: AWSCredentials
        """
        LOG.info('Assuming role: {}'.format(role.role_arn))
        LOG.info('Requesting AWS credentials using SAML assertion.')

        try:
            session = self.sts.assume_role_with_saml(
                RoleArn=role.role_arn,
                PrincipalArn=role.principal_arn,
                SAMLAssertion=self.assertion,
                DurationSeconds=self.duration)
        except (botocore.exceptions.ClientError,
                botocore.exceptions.BotoCoreError) as err:
            raise STSExchangeError(
                'Error retrieving STS credentials using SAML: {}'.format(
                    err)) from err

        creds = session['Credentials']
        expires = creds['Expiration'].astimezone()
        LOG.info('Session expires at {time} ⏳'.format(time=expires))

        return AWSCredentials(
            access_key=creds['AccessKeyId'],
            secret_key=creds['SecretAccessKey'],
            session_token=creds['SessionToken'],
            security_token=creds['SessionToken'],
            principal_arn=session['AssumedRoleUser']['Arn'],
            expires=expires,
            region=self.region)


def rfc3339(timestamp):
    """Format a datetime as RFC3339 with seconds precision."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.astimezone()
    text = timestamp.replace(microsecond=0).isoformat()
    if text.endswith('+00:00'):
        text = text[:-6] + 'Z'
    return text


def credentials_to_credential_process(creds):
    """Return JSON compatible with the AWS credential_process setting.

    https://docs.aws.amazon.com/cli/latest/topic/config-vars.html
    """
    try:
        record = {
            'Version': 1,
            'AccessKeyId': creds.access_key,
            'SecretAccessKey': creds.secret_key,
            'SessionToken': creds.session_token,
            'Expiration': rfc3339(creds.expires),
        }
        return json.dumps(record, separators=(',', ':'))
    except (AttributeError, TypeError, ValueError) as err:
        raise SerializationError(
            'Error while marshalling the credential process: {}'.format(
                err)) from err


def print_credential_process(creds):
    """Print the credential_process JSON for AWS tools to pick up.

    A failed write is logged; the JSON is returned either way.
    """
    output = credentials_to_credential_process(creds)
    try:
        print(output, flush=True)
    except OSError as err:
        LOG.error('Error writing credential process output: {}'.format(err))
    return output


def export_creds_to_var_string(creds):
    """ Export the credentials as environment variables
    """
    var_string = (
        "export AWS_ACCESS_KEY_ID={}; "
        "export AWS_SECRET_ACCESS_KEY={}; "
        "export AWS_SESSION_TOKEN={}; "
        "export AWS_SECURITY_TOKEN={}; "
        "export AWS_DEFAULT_REGION={};"
    ).format(
        creds.access_key,
        creds.secret_key,
        creds.session_token,
        creds.security_token,
        creds.region
    )
    return var_string
