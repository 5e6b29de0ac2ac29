"""
Unit tests for the application environment stack.
"""

from pathlib import Path

import pytest
import aws_cdk as cdk
from aws_cdk.assertions import Match, Template

from application_constructs.environment_stack import ApplicationEnvironmentProps, ApplicationEnvironmentStack
from application_constructs.utils.config_utils import environment_props_from_settings, get_config

SETTINGS_FILE = Path(__file__).resolve().parent.parent / 'configuration' / 'settings.json'


@pytest.fixture
def environment_stack(app):
	"""The environment stack built from the settings file in the repository."""
	props = environment_props_from_settings(get_config(str(SETTINGS_FILE)))
	return ApplicationEnvironmentStack(
		app,
		'acme-dev-ApplicationEnvironment',
		props=props,
		env=cdk.Environment(account='123456789012', region='us-east-1'),
	)


class TestApplicationEnvironmentStack:
	"""Tests for the stack assembled from the settings file."""

	def test_resources(self, environment_stack):
		"""Test every configured entry is built."""
		# Given/When: The stack is created from the settings file
		template = Template.from_stack(environment_stack)

		# Then: One load balancer, one cluster and two tables are declared
		template.resource_count_is('AWS::ElasticLoadBalancingV2::LoadBalancer', 1)
		template.resource_count_is('AWS::RDS::DBCluster', 1)
		template.resource_count_is('AWS::DynamoDB::Table', 2)
		template.resource_count_is('AWS::S3::Bucket', 1)

		# And: Only the provisioned table is autoscaled, on the table and its index
		template.resource_count_is('AWS::ApplicationAutoScaling::ScalableTarget', 4)

	def test_builder_results(self, environment_stack):
		assert list(environment_stack.load_balancers) == ['web']
		assert list(environment_stack.rds_clusters) == ['orders-db']
		assert list(environment_stack.dynamodb_tables) == ['sessions', 'events']

	def test_outputs(self, environment_stack):
		"""Test the values returned by the builders are exported."""
		outputs = Template.from_stack(environment_stack).find_outputs('*')

		assert len(outputs) == 6
		for output_id in ('webdnsname', 'websecuritygroupid', 'ordersdbsecretarn', 'ordersdbendpoint'):
			assert any(logical_id.startswith(output_id) for logical_id in outputs)

	def test_stack_tags(self, environment_stack):
		template = Template.from_stack(environment_stack)

		template.has_resource_properties(
			'AWS::DynamoDB::Table',
			{
				'TableName': 'Acme-Dev-Events',
				'BillingMode': 'PAY_PER_REQUEST',
				'Tags': Match.array_with([{'Key': 'service', 'Value': 'acme'}]),
			},
		)

	def test_events_table_is_not_retained(self, environment_stack):
		tables = Template.from_stack(environment_stack).find_resources('AWS::DynamoDB::Table')
		policies = {table['Properties']['TableName']: table.get('DeletionPolicy') for table in tables.values()}

		assert policies == {'Acme-Dev-Sessions': 'Retain', 'Acme-Dev-Events': None}

	def test_empty_environment(self, app):
		stack = ApplicationEnvironmentStack(app, 'empty', props=ApplicationEnvironmentProps(stack_name='empty'))

		assert Template.from_stack(stack).find_outputs('*') == {}
