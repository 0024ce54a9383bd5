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
"""Identity provider clients; anything that can hand us a SAML assertion."""
import logging
import os
import sys

LOG = logging.getLogger(__name__)


class UnknownError(Exception):
    """Some Expected Return Was Received."""


class EmptyInput(BaseException):
    """Invalid Input - Empty String Detected."""


class InvalidPassword(BaseException):
    """Invalid Password."""


class PasscodeRequired(BaseException):
    """A 2FA Passcode Must Be Entered."""

    def __init__(self, provider='OTP'):
        self.provider = provider
        super(PasscodeRequired, self).__init__()


class LoginDetails(object):
    """What we know about the user and where they log in."""

    def __init__(self, url=None, username=None, password=None):
        self.url = url
        self.username = username
        self.password = password


class Provider(object):
    """Base identity provider.

    Subclasses implement authenticate() and return the SAML assertion exactly
    as the IdP posts it to AWS; base64 encoded.
    """

    required = ('url', 'username', 'password')

    def validate(self, login_details):
        """Ensure the login details are reasonably sane."""
        for field in self.required:
            value = getattr(login_details, field)
            if value == '' or value is None:
                LOG.debug('Login detail {} is empty'.format(field))
                raise EmptyInput()

    def authenticate(self, login_details):
        """Log in and return the base64 encoded SAML assertion."""
        raise NotImplementedError()


class AssertionFile(Provider):
    """Read an assertion we already have from a file, or stdin for '-'."""

    required = ()

    def __init__(self, path):
        self.path = path

    def validate(self, login_details):
        if not self.path:
            raise EmptyInput()
        if self.path != '-' and not os.path.isfile(self.path):
            raise UnknownError(
                'Assertion file not found: {}'.format(self.path))

    def authenticate(self, login_details):
        if self.path == '-':
            LOG.debug('Reading SAML assertion from stdin')
            return sys.stdin.read().strip()

        LOG.debug('Reading SAML assertion from {}'.format(self.path))
        with open(self.path, 'r') as assertion_file:
            return assertion_file.read().strip()
