"""
Unit tests for the settings loading helpers.
"""

import json
from pathlib import Path

import pytest

from application_constructs.resources.dynamodb import TableCapacityMode
from application_constructs.utils.config_utils import (
	autoscale_props_from_config,
	capacity_mode_from_config,
	dynamodb_table_props_from_config,
	environment_props_from_settings,
	get_config,
	global_secondary_index_from_config,
	load_balancer_props_from_config,
	rds_cluster_props_from_config,
	select_subnets,
)
from application_constructs.utils.validation import ConfigurationError

SETTINGS_FILE = Path(__file__).resolve().parent.parent / 'configuration' / 'settings.json'

NETWORK = {
	'vpc_id': 'vpc-0123456789abcdef0',
	'public_subnet_ids': ['subnet-public-a', 'subnet-public-b'],
	'private_subnet_ids': ['subnet-private-a', 'subnet-private-b'],
}


class TestGetConfig:
	"""Tests for reading the settings file."""

	def test_get_config(self, tmp_path):
		# Given: A JSON settings file
		settings_file = tmp_path / 'settings.json'
		settings_file.write_text(json.dumps({'stack_name': 'unit-test'}))

		# When: We load it
		config = get_config(str(settings_file))

		# Then: The parsed content is returned
		assert config == {'stack_name': 'unit-test'}

	def test_get_config_missing_file(self, tmp_path):
		with pytest.raises(FileNotFoundError):
			get_config(str(tmp_path / 'missing.json'))


class TestLoadBalancerSettings:
	"""Tests for load balancer entries."""

	def test_external_load_balancer_uses_public_subnets(self):
		props = load_balancer_props_from_config(
			{'prefix': 'Acme', 'alb_short_name': 'acme'}, NETWORK, {'service': 'acme'}
		)

		assert props.subnet_ids == NETWORK['public_subnet_ids']
		assert props.vpc_id == NETWORK['vpc_id']
		assert props.internal is False
		assert props.access_logs is None
		assert props.tags == {'service': 'acme'}

	def test_internal_load_balancer_uses_private_subnets(self):
		props = load_balancer_props_from_config(
			{'prefix': 'Acme', 'alb_short_name': 'acme', 'internal': True}, NETWORK, {}
		)

		assert props.subnet_ids == NETWORK['private_subnet_ids']

	def test_access_logs_and_tags(self):
		"""Test access logs are parsed and entry tags override the global ones."""
		section = {
			'prefix': 'Acme',
			'alb_short_name': 'acme',
			'access_logs': {'existing_bucket': 'shared-logs', 'prefix': 'alb/acme'},
			'tags': {'service': 'web'},
		}

		props = load_balancer_props_from_config(section, NETWORK, {'service': 'acme', 'team': 'platform'})

		assert props.access_logs.existing_bucket == 'shared-logs'
		assert props.access_logs.prefix == 'alb/acme'
		assert props.tags == {'service': 'web', 'team': 'platform'}

	def test_missing_prefix(self):
		with pytest.raises(ConfigurationError, match="Missing required key 'prefix' in load_balancers"):
			load_balancer_props_from_config({'alb_short_name': 'acme'}, NETWORK, {})

	def test_unknown_subnet_tier(self):
		with pytest.raises(ConfigurationError, match="'public' or 'private'"):
			select_subnets(NETWORK, 'isolated')


class TestRDSClusterSettings:
	"""Tests for cluster entries."""

	def test_cluster_settings(self):
		section = {
			'prefix': 'Acme-Orders',
			'cluster': {
				'engine': 'aurora-postgresql',
				'master_username': 'acme_admin',
				'database_name': 'orders',
				'port': 5433,
				'backup_retention_period': 7,
			},
		}

		props = rds_cluster_props_from_config(section, NETWORK, {})

		assert props.subnet_ids == NETWORK['private_subnet_ids']
		assert props.rds_config.engine == 'aurora-postgresql'
		assert props.rds_config.master_username == 'acme_admin'
		assert props.rds_config.database_name == 'orders'
		assert props.rds_config.port == 5433
		assert props.rds_config.cluster_props == {'backup_retention_period': 7}

	def test_missing_engine(self):
		section = {'prefix': 'Acme-Orders', 'cluster': {'master_username': 'acme_admin'}}

		with pytest.raises(ConfigurationError, match="'engine'"):
			rds_cluster_props_from_config(section, NETWORK, {})

	def test_controlled_property_in_settings(self):
		section = {
			'prefix': 'Acme-Orders',
			'cluster': {'engine': 'aurora-mysql', 'master_username': 'acme_admin', 'db_cluster_identifier': 'mine'},
		}

		with pytest.raises(ConfigurationError, match='db_cluster_identifier'):
			rds_cluster_props_from_config(section, NETWORK, {})


class TestDynamoDBSettings:
	"""Tests for table entries."""

	@pytest.mark.parametrize(
		'value, expected',
		[
			('ON_DEMAND', TableCapacityMode.ON_DEMAND),
			('PAY_PER_REQUEST', TableCapacityMode.ON_DEMAND),
			('PROVISIONED', TableCapacityMode.PROVISIONED),
			(None, None),
		],
	)
	def test_capacity_mode(self, value, expected):
		assert capacity_mode_from_config(value) is expected

	def test_unknown_capacity_mode(self):
		with pytest.raises(ConfigurationError, match='Unknown capacity_mode'):
			capacity_mode_from_config('SOMETIMES')

	def test_autoscale_props(self):
		props = autoscale_props_from_config({'tracking': 60, 'max': 20, 'min': 2})

		assert (props.tracking, props.max_capacity, props.min_capacity) == (60, 20, 2)
		assert autoscale_props_from_config(None) is None

	def test_autoscale_props_missing_key(self):
		with pytest.raises(ConfigurationError, match="'tracking'"):
			autoscale_props_from_config({'max': 20, 'min': 2})

	def test_global_secondary_index(self):
		index = global_secondary_index_from_config(
			{'name': 'user-index', 'hash_key': 'user_id', 'range_key': 'created_at', 'read_capacity': 3, 'write_capacity': 4}
		)

		assert index.index_name == 'user-index'
		assert [key.key_type for key in index.key_schema] == ['HASH', 'RANGE']
		assert index.projection.projection_type == 'ALL'
		assert index.provisioned_throughput.read_capacity_units == 3
		assert index.provisioned_throughput.write_capacity_units == 4

	def test_global_secondary_index_without_capacity(self):
		index = global_secondary_index_from_config({'name': 'user-index', 'hash_key': 'user_id'})

		assert index.provisioned_throughput is None

	def test_table_settings(self):
		"""Test a table entry becomes table properties."""
		# Given: A table entry with a range key, stream and autoscaling
		section = {
			'prefix': 'Acme-Sessions',
			'table': {
				'hash_key': 'id',
				'range_key': 'created_at',
				'attributes': [{'name': 'id', 'type': 'S'}, {'name': 'created_at', 'type': 'N'}],
				'stream_enabled': True,
				'stream_view_type': 'KEYS_ONLY',
			},
			'read_capacity': {'tracking': 70, 'max': 10, 'min': 1},
			'prevent_destroy_table': False,
		}

		# When: We parse it
		props = dynamodb_table_props_from_config(section, {'service': 'acme'})

		# Then: Every setting is carried over
		table_config = props.table_config
		assert props.prefix == 'Acme-Sessions'
		assert [key.attribute_name for key in table_config.key_schema] == ['id', 'created_at']
		assert [attribute.attribute_type for attribute in table_config.attribute_definitions] == ['S', 'N']
		assert table_config.stream_enabled is True
		assert table_config.stream_view_type == 'KEYS_ONLY'
		assert props.read_capacity.max_capacity == 10
		assert props.write_capacity is None
		assert props.prevent_destroy_table is False
		assert props.tags == {'service': 'acme'}

	def test_table_without_attributes(self):
		with pytest.raises(ConfigurationError, match="'attributes'"):
			dynamodb_table_props_from_config({'prefix': 'Acme', 'table': {'hash_key': 'id'}}, {})


class TestEnvironmentSettings:
	"""Tests for the whole settings file."""

	def test_shipped_settings(self):
		"""Test the settings file in the repository parses."""
		settings = get_config(str(SETTINGS_FILE))

		props = environment_props_from_settings(settings)

		assert props.stack_name == 'acme-dev'
		assert list(props.load_balancers) == ['web']
		assert list(props.rds_clusters) == ['orders-db']
		assert list(props.dynamodb_tables) == ['sessions', 'events']
		assert props.dynamodb_tables['events'].capacity_mode is TableCapacityMode.ON_DEMAND

	def test_duplicate_names(self):
		entry = {'name': 'events', 'prefix': 'Acme', 'table': {'hash_key': 'id', 'attributes': [{'name': 'id', 'type': 'S'}]}}
		settings = {'stack_name': 'unit-test', 'dynamodb_tables': [entry, dict(entry)]}

		with pytest.raises(ConfigurationError, match="Duplicate name 'events' in dynamodb_tables"):
			environment_props_from_settings(settings)

	def test_entry_without_name(self):
		settings = {'stack_name': 'unit-test', 'load_balancers': [{'prefix': 'Acme', 'alb_short_name': 'acme'}]}

		with pytest.raises(ConfigurationError, match="'name'"):
			environment_props_from_settings(settings)

	def test_missing_stack_name(self):
		with pytest.raises(ConfigurationError, match="'stack_name'"):
			environment_props_from_settings({})
