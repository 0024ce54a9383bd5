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
"""AWS SAML assertion parser.

Everything we need to read out of the (base64 encoded) SAML assertion lives
here: the AWS roles it grants and the URL it is destined for.
"""
import base64
import logging
import re
import xml.etree.ElementTree as ET

LOG = logging.getLogger(__name__)

SAML_NS = '{urn:oasis:names:tc:SAML:2.0:assertion}'
ROLE_ATTRIBUTE = 'https://aws.amazon.com/SAML/Attributes/Role'
ARN = re.compile(r'^arn:[^:\s]+:[^:\s]*:[^:\s]*:(?P<account>[^:\s]*):\S+$')


class Error(Exception):
    """Base error for the SAML to AWS login flow."""


class InvalidAssertionEncoding(Error):
    """Raised when the SAML assertion is not valid base64."""


class RoleParseError(Error):
    """Raised when the AWS roles can't be read from the assertion."""


class AccountResolutionError(Error):
    """Raised when we can't work out which AWS accounts the roles are in."""


class AWSRole(object):
    """An AWS IAM role granted by the assertion.

    The account is the name of the AWS account the role belongs to once
    account details have been looked up; it is None until then.
    """

    def __init__(self, role_arn, principal_arn=None, name=None,
                 account=None):
        self.role_arn = role_arn
        self.principal_arn = principal_arn
        self.name = name or role_arn.split('/')[-1]
        self.account = account

    @property
    def account_id(self):
        """Return the AWS account number from the role ARN."""
        return self.role_arn.split(':')[4]

    def _key(self):
        return (self.role_arn, self.principal_arn, self.name, self.account)

    def __eq__(self, other):
        if not isinstance(other, AWSRole):
            return NotImplemented
        return self._key() == other._key()

    def __repr__(self):
        return ('AWSRole(role_arn={!r}, principal_arn={!r}, '
                'account={!r})').format(self.role_arn, self.principal_arn,
                                        self.account)


def parse_roles(values):
    """Turn raw role attribute values into AWSRole objects.

    Each value is a "role ARN,principal ARN" pair; the order varies between
    identity providers so we look at the ARNs to tell them apart.

    Args:
        values: List of strings from the SAML role attribute

    Returns: List of AWSRole
    """
    roles = []
    for value in values:
        arns = [arn.strip() for arn in value.split(',')]
        if len(arns) != 2 or not all(ARN.match(arn) for arn in arns):
            raise RoleParseError(
                'Error parsing AWS roles: invalid role string "{}"'.format(
                    value))

        role_arn = None
        principal_arn = None
        for arn in arns:
            if ':saml-provider/' in arn:
                principal_arn = arn
            elif ':role/' in arn:
                role_arn = arn

        if principal_arn is None:
            raise RoleParseError(
                'Error parsing AWS roles: no principal ARN in "{}"'.format(
                    value))
        if role_arn is None:
            raise RoleParseError(
                'Error parsing AWS roles: no role ARN in "{}"'.format(value))

        role = AWSRole(role_arn, principal_arn)
        if role.account_id != ARN.match(principal_arn).group('account'):
            raise RoleParseError(
                'Error parsing AWS roles: role and principal are in '
                'different accounts in "{}"'.format(value))

        roles.append(role)
    return roles


class SamlAssertion:
    """Handle the AWS SAML assertion.

    The assertion is kept exactly as the identity provider handed it to us
    (base64 encoded) since that is also what AWS wants back.
    """

    def __init__(self, assertion):
        self.assertion = assertion

    def decode(self):
        """Decode the assertion into raw XML bytes."""
        if not self.assertion:
            raise InvalidAssertionEncoding(
                'Error decoding SAML assertion: assertion is empty')
        try:
            # Some IdPs wrap the encoded assertion; line breaks are not data
            return base64.b64decode(''.join(self.assertion.split()),
                                    validate=True)
        except ValueError as err:
            raise InvalidAssertionEncoding(
                'Error decoding SAML assertion: {}'.format(err)) from err

    def _xml(self, error, stage):
        try:
            return ET.fromstring(self.decode())
        except ET.ParseError as err:
            raise error('{}: invalid XML in SAML assertion: {}'.format(
                stage, err)) from err

    def extract_roles(self):
        """Extract the raw role attribute values from the assertion.

        Returns: List of strings, empty if the assertion grants no AWS roles
        """
        root = self._xml(RoleParseError, 'Error parsing AWS roles')

        statement = next(root.iter(SAML_NS + 'AttributeStatement'), None)
        if statement is None:
            raise RoleParseError('Error parsing AWS roles: no '
                                 'AttributeStatement in SAML assertion')

        values = []
        for attribute in statement.iter(SAML_NS + 'Attribute'):
            if attribute.get('Name') != ROLE_ATTRIBUTE:
                continue
            for value in attribute.iter(SAML_NS + 'AttributeValue'):
                values.append((value.text or '').strip())

        LOG.debug('Role attribute values: {}'.format(values))
        return values

    def roles(self):
        """Extract role information from the assertion."""
        return parse_roles(self.extract_roles())

    def destination_url(self):
        """Find the URL the assertion is meant to be posted to.

        This is the Destination of the SAML Response; when the IdP leaves that
        out we fall back to the Recipient of the subject confirmation.

        Returns: String URL
        """
        stage = 'Error parsing destination URL'
        root = self._xml(AccountResolutionError, stage)

        destination = root.get('Destination')
        if destination:
            return destination

        confirmation = next(root.iter(SAML_NS + 'SubjectConfirmationData'),
                            None)
        if confirmation is not None and confirmation.get('Recipient'):
            return confirmation.get('Recipient')

        raise AccountResolutionError(
            '{}: no Destination or Recipient in SAML assertion'.format(stage))
