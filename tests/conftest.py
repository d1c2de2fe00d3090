"""Shared fixtures for the ticketing tests."""
import boto3
import pytest
from moto import mock_aws

from processor.models import ParsedSubmission
from storage.dynamodb_manager import DynamoDBManager

EVENTS_TABLE = 'test-events'
USERS_TABLE = 'test-users'
TICKETS_TABLE = 'test-tickets'


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real credentials."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb_tables():
    """Create mock DynamoDB tables for events, users and tickets."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        dynamodb.create_table(
            TableName=EVENTS_TABLE,
            KeySchema=[{'AttributeName': 'form_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'form_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        dynamodb.create_table(
            TableName=USERS_TABLE,
            KeySchema=[{'AttributeName': 'email', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'email', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        dynamodb.create_table(
            TableName=TICKETS_TABLE,
            KeySchema=[{'AttributeName': 'invoice_no', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'invoice_no', 'AttributeType': 'S'},
                {'AttributeName': 'ticket_id', 'AttributeType': 'S'},
                {'AttributeName': 'event_id', 'AttributeType': 'S'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': 'ticket-id-index',
                    'KeySchema': [
                        {'AttributeName': 'ticket_id', 'KeyType': 'HASH'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                },
                {
                    'IndexName': 'event-index',
                    'KeySchema': [
                        {'AttributeName': 'event_id', 'KeyType': 'HASH'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield dynamodb


@pytest.fixture
def store(dynamodb_tables):
    """Create DynamoDBManager instance with mock tables."""
    return DynamoDBManager(EVENTS_TABLE, USERS_TABLE, TICKETS_TABLE)


@pytest.fixture
def submission():
    """A complete normalized submission."""
    return ParsedSubmission(
        email='jane.doe@example.com',
        name='Jane Doe',
        invoice_no='1001',
        form_id='240001',
        phone='0400 000 000',
        church='Hillside Youth',
        quantity=2,
        product_details='General Admission (Amount: 5.00 AUD, Quantity: 2)',
        total_amount=10.0
    )
