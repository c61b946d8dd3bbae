"""
Tests for the API exception handler and domain exceptions.
"""
from rest_framework import status
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.test import APIRequestFactory

from apps.core.exceptions import CommitInProgress, RuleStoreUnavailable, custom_exception_handler


def handle(exc, request_id='req-1'):
    request = APIRequestFactory().get('/v1/rbac/menu')
    request.request_id = request_id
    return custom_exception_handler(exc, {'request': request, 'view': None})


class TestCustomExceptionHandler:

    def test_rule_store_unavailable_is_503(self):
        response = handle(RuleStoreUnavailable())

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.data['error']['code'] == 'RULES_UNAVAILABLE'
        assert response.data['error']['request_id'] == 'req-1'

    def test_commit_in_progress_is_409(self):
        response = handle(CommitInProgress())

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['error']['code'] == 'COMMIT_IN_PROGRESS'

    def test_validation_errors_carry_details(self):
        response = handle(ValidationError({'changes': ['Unknown permission keys: launch_rockets']}))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error']['code'] == 'VALIDATION_ERROR'
        assert response.data['error']['message'] == 'Invalid request data'
        assert 'changes' in response.data['error']['details']

    def test_not_found_message(self):
        response = handle(NotFound("Unknown role 'janitor'"))

        assert response.data['error'] == {
            'code': 'NOT_FOUND',
            'message': "Unknown role 'janitor'",
            'request_id': 'req-1',
        }

    def test_unhandled_exception_is_500(self):
        response = handle(KeyError('boom'))

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data['error']['code'] == 'INTERNAL_ERROR'
