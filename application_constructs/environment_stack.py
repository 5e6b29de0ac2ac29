"""
Application Environment Stack

This module defines a stack that assembles a complete application environment
from the construct builders: application load balancers, Aurora clusters and
DynamoDB tables. Each builder is called once per configured entry and the
values it returns are published as stack outputs.
"""

import logging
from typing import Any, Dict, Optional

from aws_cdk import (
	CfnOutput,
	Stack,
	Tags,
)
from constructs import Construct
from cdk_nag import NagSuppressions

from application_constructs.resources.dynamodb import (
	ApplicationDynamoDBTableProps,
	create_application_dynamodb_table,
)
from application_constructs.resources.load_balancer import (
	ApplicationLoadBalancerProps,
	create_application_load_balancer,
)
from application_constructs.resources.rds_cluster import (
	ApplicationRDSClusterProps,
	create_application_rds_cluster,
)

logger = logging.getLogger(__name__)


class ApplicationEnvironmentProps:
	"""
	Properties for the ApplicationEnvironmentStack.

	Attributes:
	    stack_name (str): Name of the environment, used in output descriptions
	    tags (Dict[str, str]): Tags to apply to all resources in the stack
	    load_balancers (Dict[str, ApplicationLoadBalancerProps]): Load balancers by construct id
	    rds_clusters (Dict[str, ApplicationRDSClusterProps]): Aurora clusters by construct id
	    dynamodb_tables (Dict[str, ApplicationDynamoDBTableProps]): DynamoDB tables by construct id
	"""

	def __init__(
		self,
		*,
		stack_name: str,
		tags: Optional[Dict[str, str]] = None,
		load_balancers: Optional[Dict[str, ApplicationLoadBalancerProps]] = None,
		rds_clusters: Optional[Dict[str, ApplicationRDSClusterProps]] = None,
		dynamodb_tables: Optional[Dict[str, ApplicationDynamoDBTableProps]] = None,
	):
		self.stack_name = stack_name
		self.tags = tags or {}
		self.load_balancers = load_balancers or {}
		self.rds_clusters = rds_clusters or {}
		self.dynamodb_tables = dynamodb_tables or {}


class ApplicationEnvironmentStack(Stack):
	"""
	Creates the resources of one application environment.

	The stack holds, for every configured entry:
	- An application load balancer with its security group and optional log bucket
	- An Aurora cluster with its security group, subnet group and secret
	- A DynamoDB table with its autoscaling targets, policies and role

	Attributes:
	    load_balancers: Builder results by construct id
	    rds_clusters: Builder results by construct id
	    dynamodb_tables: Builder results by construct id
	"""

	def __init__(
		self,
		scope: Construct,
		construct_id: str,
		*,
		props: ApplicationEnvironmentProps,
		**kwargs: Any,
	) -> None:
		super().__init__(scope, construct_id, **kwargs)

		# Apply tags to all resources in the stack
		for key, value in props.tags.items():
			Tags.of(self).add(key=key, value=value)

		self.load_balancers = {}
		for name, alb_props in props.load_balancers.items():
			resources = create_application_load_balancer(self, name, alb_props)
			self.load_balancers[name] = resources
			CfnOutput(
				self,
				f'{name}-dns-name',
				value=resources.alb.attr_dns_name,
				description=f'DNS name of the {name} load balancer in {props.stack_name}',
			)
			CfnOutput(self, f'{name}-security-group-id', value=resources.security_group.attr_group_id)

		self.rds_clusters = {}
		for name, rds_props in props.rds_clusters.items():
			resources = create_application_rds_cluster(self, name, rds_props)
			self.rds_clusters[name] = resources
			CfnOutput(
				self,
				f'{name}-secret-arn',
				value=resources.secret_arn,
				description=f'Connection details of the {name} cluster in {props.stack_name}',
			)
			CfnOutput(self, f'{name}-endpoint', value=resources.cluster.attr_endpoint_address)

		self.dynamodb_tables = {}
		for name, table_props in props.dynamodb_tables.items():
			resources = create_application_dynamodb_table(self, name, table_props)
			self.dynamodb_tables[name] = resources
			CfnOutput(self, f'{name}-table-name', value=resources.table.ref)

		if props.rds_clusters:
			# The lookup and secret version custom resources share one provider function per stack
			NagSuppressions.add_stack_suppressions(
				self,
				[
					{
						'id': 'AwsSolutions-IAM4',
						'reason': 'The custom resource provider uses AWSLambdaBasicExecutionRole for logging.',
					},
					{
						'id': 'AwsSolutions-L1',
						'reason': 'The custom resource provider runtime is managed by the CDK.',
					},
				],
			)

		logger.info(
			f'{construct_id}: {len(self.load_balancers)} load balancers, '
			f'{len(self.rds_clusters)} clusters, {len(self.dynamodb_tables)} tables'
		)
