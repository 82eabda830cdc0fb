"""
Tests for the MongoDB request log and the API logging middleware.

MongoDB is mocked throughout except for RealMongoDBTests, which skip when no
server is running. To run them:
    docker run -d -p 27017:27017 --name mongodb-test mongo:latest
    python manage.py test utils
"""
import unittest
from unittest.mock import MagicMock, patch

from django.test import TestCase, override_settings
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError
from rest_framework import status
from rest_framework.test import APITestCase

import utils.mongo
from berths.services import initialize_inventory
from utils.mongo import get_mongo_db, is_mongodb_available, log_api_request, reset_mongo_connection


def mongodb_reachable():
    """Check if MongoDB is available for testing."""
    try:
        from pymongo import MongoClient
        client = MongoClient('mongodb://localhost:27017/', serverSelectionTimeoutMS=2000)
        client.admin.command('ping')
        client.close()
        return True
    except PyMongoError:
        return False


requires_mongodb = unittest.skipUnless(
    mongodb_reachable(),
    "MongoDB is not available. Start MongoDB to run these tests."
)


class MongoConnectionTests(TestCase):
    """Test the MongoDB client singleton."""

    def setUp(self):
        reset_mongo_connection()

    def tearDown(self):
        reset_mongo_connection()

    @override_settings(MONGODB_ENABLED=False)
    def test_disabled_sink(self):
        with patch('utils.mongo.MongoClient') as mock_client:
            self.assertIsNone(get_mongo_db())
        mock_client.assert_not_called()

    @override_settings(MONGODB_ENABLED=True, MONGODB_NAME='railway_logs_test')
    def test_unreachable_server_remembered(self):
        with patch('utils.mongo.MongoClient') as mock_client:
            mock_client.return_value.admin.command.side_effect = ServerSelectionTimeoutError('down')

            self.assertIsNone(get_mongo_db())
            self.assertIsNone(get_mongo_db())
            self.assertFalse(is_mongodb_available())

        # No second connection attempt once the server is known to be down
        self.assertEqual(mock_client.call_count, 1)

    @override_settings(MONGODB_ENABLED=True, MONGODB_NAME='railway_logs_test')
    def test_connect_creates_indexes(self):
        with patch('utils.mongo.MongoClient') as mock_client:
            client = mock_client.return_value
            db = get_mongo_db()

        self.assertIs(db, client.__getitem__.return_value)
        client.__getitem__.assert_called_once_with('railway_logs_test')
        self.assertTrue(db.api_logs.create_index.called)
        self.assertTrue(is_mongodb_available())


class LogApiRequestTests(TestCase):
    """Test building and writing audit log entries."""

    def test_entry_written(self):
        db = MagicMock()
        with patch('utils.mongo.get_mongo_db', return_value=db):
            log_api_request(
                endpoint='/api/v1/tickets/book/',
                method='POST',
                request_params={},
                response_status=201,
                execution_time_ms=12.5,
                pnr='ABCD123456',
                ticket_status='RAC'
            )

        entry = db.api_logs.insert_one.call_args[0][0]
        self.assertEqual(entry['endpoint'], '/api/v1/tickets/book/')
        self.assertEqual(entry['response_status'], 201)
        self.assertEqual(entry['pnr'], 'ABCD123456')
        self.assertEqual(entry['ticket_status'], 'RAC')
        self.assertIn('timestamp', entry)

    def test_optional_fields_omitted(self):
        db = MagicMock()
        with patch('utils.mongo.get_mongo_db', return_value=db):
            log_api_request('/api/v1/tickets/cancel/X/', 'POST', {'pnr': 'X'}, 404, 3.1)

        entry = db.api_logs.insert_one.call_args[0][0]
        self.assertNotIn('pnr', entry)
        self.assertNotIn('ticket_status', entry)

    def test_skipped_without_mongodb(self):
        with patch('utils.mongo.get_mongo_db', return_value=None):
            log_api_request('/api/v1/tickets/book/', 'POST', {}, 201, 1.0)

    def test_write_errors_not_raised(self):
        db = MagicMock()
        db.api_logs.insert_one.side_effect = PyMongoError('write failed')
        with patch('utils.mongo.get_mongo_db', return_value=db):
            log_api_request('/api/v1/tickets/book/', 'POST', {}, 201, 1.0)


@override_settings(MONGODB_ENABLED=False)
class APILoggingMiddlewareTests(APITestCase):
    """Test which requests reach the audit log and with what."""

    def setUp(self):
        initialize_inventory(confirmed_berths=0, rac_berths=1, waiting_list_size=1)

    def book(self):
        return self.client.post('/api/v1/tickets/book/', {
            'passenger': {'name': 'Arjun Mehta', 'age': 30, 'gender': 'MALE'}
        }, format='json')

    @patch('utils.middleware.log_api_request')
    def test_booking_logged(self, mock_log):
        response = self.book()

        mock_log.assert_called_once()
        kwargs = mock_log.call_args.kwargs
        self.assertEqual(kwargs['endpoint'], '/api/v1/tickets/book/')
        self.assertEqual(kwargs['method'], 'POST')
        self.assertEqual(kwargs['response_status'], 201)
        self.assertEqual(kwargs['pnr'], response.data['ticket']['pnr'])
        self.assertEqual(kwargs['ticket_status'], 'RAC')
        self.assertGreaterEqual(kwargs['execution_time_ms'], 0)

    @patch('utils.middleware.log_api_request')
    def test_cancellation_logged_with_path_parameters(self, mock_log):
        pnr = self.book().data['ticket']['pnr']
        mock_log.reset_mock()

        self.client.post(f'/api/v1/tickets/cancel/{pnr}/')

        kwargs = mock_log.call_args.kwargs
        self.assertEqual(kwargs['request_params'], {'pnr': pnr})
        self.assertEqual(kwargs['pnr'], pnr)
        self.assertEqual(kwargs['response_status'], 200)

    @patch('utils.middleware.log_api_request')
    def test_unknown_pnr_cancellation_logged(self, mock_log):
        self.client.post('/api/v1/tickets/cancel/NOSUCHPNR0/')

        kwargs = mock_log.call_args.kwargs
        self.assertEqual(kwargs['response_status'], 404)
        self.assertEqual(kwargs['pnr'], 'NOSUCHPNR0')

    @patch('utils.middleware.log_api_request')
    def test_read_endpoints_not_logged(self, mock_log):
        self.client.get('/api/v1/tickets/available/')
        self.client.get('/api/v1/tickets/booked/')

        mock_log.assert_not_called()

    @patch('utils.middleware.log_api_request', side_effect=RuntimeError('sink down'))
    def test_logging_failure_does_not_affect_response(self, mock_log):
        response = self.book()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)


@requires_mongodb
class RealMongoDBTests(TestCase):
    """
    Real integration tests with MongoDB.
    These tests actually connect to MongoDB and verify logging works.
    """

    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        from pymongo import MongoClient
        cls.mongo_client = MongoClient('mongodb://localhost:27017/')
        cls.test_db_name = 'railway_logs_test'
        cls.db = cls.mongo_client[cls.test_db_name]

    @classmethod
    def tearDownClass(cls):
        cls.mongo_client.drop_database(cls.test_db_name)
        cls.mongo_client.close()
        super().tearDownClass()

    def setUp(self):
        self.db.api_logs.delete_many({})
        reset_mongo_connection()

    def tearDown(self):
        reset_mongo_connection()

    def test_log_api_request_stores_data(self):
        with override_settings(MONGODB_ENABLED=True, MONGODB_URI='mongodb://localhost:27017/',
                               MONGODB_NAME=self.test_db_name):
            log_api_request(
                endpoint='/api/v1/tickets/book/',
                method='POST',
                request_params={},
                response_status=201,
                execution_time_ms=150.5,
                pnr='ABCD123456',
                ticket_status='CONFIRMED'
            )

        logs = list(self.db.api_logs.find({'pnr': 'ABCD123456'}))
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0]['ticket_status'], 'CONFIRMED')
        self.assertEqual(logs[0]['execution_time_ms'], 150.5)
        self.assertIsNotNone(utils.mongo._mongo_db)
