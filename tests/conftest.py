"""
Shared pytest fixtures for the application construct tests.
"""

import pytest
import aws_cdk as cdk
from aws_cdk import aws_dynamodb as ddb

TEST_ENV = cdk.Environment(account='123456789012', region='us-east-1')


@pytest.fixture
def app():
	"""Create a CDK app for a single test."""
	return cdk.App()


@pytest.fixture
def stack(app):
	"""Create an empty stack in us-east-1 to build constructs in."""
	return cdk.Stack(app, 'test', env=TEST_ENV)


@pytest.fixture
def new_stack():
	"""Factory for a stack in an app of its own, optionally in another region."""

	def build(stack_id='test', region=TEST_ENV.region):
		return cdk.Stack(cdk.App(), stack_id, env=cdk.Environment(account=TEST_ENV.account, region=region))

	return build


@pytest.fixture
def key_schema():
	"""A single attribute partition key."""
	return [ddb.CfnTable.KeySchemaProperty(attribute_name='id', key_type='HASH')]


@pytest.fixture
def attribute_definitions():
	return [ddb.CfnTable.AttributeDefinitionProperty(attribute_name='id', attribute_type='S')]


@pytest.fixture
def global_secondary_index():
	"""Factory for provisioned global secondary indexes keyed on their own attribute."""

	def build(name, read_capacity=2, write_capacity=3):
		return ddb.CfnTable.GlobalSecondaryIndexProperty(
			index_name=name,
			key_schema=[ddb.CfnTable.KeySchemaProperty(attribute_name=f'{name}-key', key_type='HASH')],
			projection=ddb.CfnTable.ProjectionProperty(projection_type='ALL'),
			provisioned_throughput=ddb.CfnTable.ProvisionedThroughputProperty(
				read_capacity_units=read_capacity, write_capacity_units=write_capacity
			),
		)

	return build
