"""
Aurora cluster resources.

This module provides the builder for a private Aurora cluster:
- A security group admitting the database port from inside the VPC only
- A subnet group over the supplied subnets
- A Secrets Manager generated bootstrap password, read by the cluster through a
  dynamic reference so that repeated deployments do not reset it
- The cluster itself
- A Secrets Manager secret holding the connection details, meant to be
  rotated by hand after the cluster is created
"""

import logging
from typing import Any, Dict, List, NamedTuple, Optional

from constructs import Construct
from aws_cdk import (
	SecretValue,
	Stack,
	aws_ec2 as ec2,
	aws_rds as rds,
	aws_secretsmanager as secretsmanager,
	custom_resources as cr,
)
from cdk_nag import NagSuppressions

from application_constructs.utils.cfn_utils import prefixed_name, to_cfn_tags
from application_constructs.utils.lifecycle import apply_lifecycle
from application_constructs.utils.validation import ConfigurationError, reject_controlled_fields

logger = logging.getLogger(__name__)

SUPPORTED_ENGINES = ('aurora', 'aurora-mysql', 'aurora-postgresql')
POSTGRESQL_PORT = 5432
MYSQL_PORT = 3306
MASTER_PASSWORD_LENGTH = 16
# Together with uppercase and punctuation exclusion this leaves 0-9 and a-f
NON_HEX_LOWERCASE = 'ghijklmnopqrstuvwxyz'

CONTROLLED_CLUSTER_PROPERTIES = (
	'db_cluster_identifier',
	'vpc_security_group_ids',
	'db_subnet_group_name',
	'copy_tags_to_snapshot',
	'tags',
	'master_user_password',
)


class ApplicationRDSClusterConfig:
	"""
	Cluster settings accepted by create_application_rds_cluster.

	Any keyword not listed below is passed through to rds.CfnDBCluster, except
	for the properties the builder sets itself.

	Attributes:
	    engine (str): 'aurora', 'aurora-mysql' or 'aurora-postgresql'
	    master_username (str): Master user name
	    master_password (Optional[str]): Master password, generated when omitted
	    database_name (Optional[str]): Name of the initial database
	    port (Optional[int]): Database port, derived from the engine when omitted
	    cluster_props (Dict[str, Any]): Remaining CfnDBCluster properties
	"""

	def __init__(
		self,
		*,
		engine: str,
		master_username: str,
		master_password: Optional[str] = None,
		database_name: Optional[str] = None,
		port: Optional[int] = None,
		**cluster_props: Any,
	):
		if engine not in SUPPORTED_ENGINES:
			raise ConfigurationError(f'engine must be one of {", ".join(SUPPORTED_ENGINES)}, got {engine!r}')
		if not master_username:
			raise ConfigurationError('master_username is required to create an RDS cluster')
		reject_controlled_fields('ApplicationRDSClusterConfig', cluster_props, CONTROLLED_CLUSTER_PROPERTIES)

		self.engine = engine
		self.master_username = master_username
		self.master_password = master_password
		self.database_name = database_name
		self.port = port
		self.cluster_props = cluster_props


class ApplicationRDSClusterProps:
	"""
	Properties for create_application_rds_cluster.

	Attributes:
	    prefix (str): Name prefix for the cluster, subnet group, security group and secret
	    vpc_id (str): VPC the cluster runs in
	    subnet_ids (List[str]): Subnets of the subnet group
	    rds_config (ApplicationRDSClusterConfig): Cluster settings
	    tags (Dict[str, str]): Tags applied to every resource
	"""

	def __init__(
		self,
		*,
		prefix: str,
		vpc_id: str,
		subnet_ids: List[str],
		rds_config: ApplicationRDSClusterConfig,
		tags: Optional[Dict[str, str]] = None,
	):
		self.prefix = prefix
		self.vpc_id = vpc_id
		self.subnet_ids = subnet_ids
		self.rds_config = rds_config
		self.tags = tags or {}


class ApplicationRDSClusterResources(NamedTuple):
	cluster: rds.CfnDBCluster
	secret_arn: str


def create_application_rds_cluster(
	scope: Construct, construct_id: str, props: ApplicationRDSClusterProps
) -> ApplicationRDSClusterResources:
	"""
	Create an Aurora cluster reachable from inside its VPC.

	The cluster is initialized with the supplied master password or with one
	generated by Secrets Manager on the first deployment. The generated value
	is only referenced from the template, so later deployments leave the
	cluster password as it is. Drift on the master credentials is ignored
	afterwards, since they are expected to be rotated out of band through the
	secret created here.

	Args:
	    scope: The CDK construct scope
	    construct_id: Identifier of the construct grouping the resources
	    props: Cluster properties

	Returns:
	    ApplicationRDSClusterResources: The cluster and the ARN of its secret
	"""
	rds_config = props.rds_config
	construct = Construct(scope, construct_id)
	logger.info(f'Creating {rds_config.engine} cluster {construct.node.path}')

	vpc_cidr_block = lookup_vpc_cidr_block(construct, props.vpc_id)
	rds_port = resolve_rds_port(rds_config.engine, rds_config.port)

	security_group = ec2.CfnSecurityGroup(
		construct,
		'rds_security_group',
		group_description='Managed by CDK',
		vpc_id=props.vpc_id,
		security_group_ingress=[
			ec2.CfnSecurityGroup.IngressProperty(
				ip_protocol='tcp', from_port=rds_port, to_port=rds_port, cidr_ip=vpc_cidr_block
			),
		],
		security_group_egress=[
			ec2.CfnSecurityGroup.EgressProperty(
				ip_protocol='-1', from_port=0, to_port=0, cidr_ip='0.0.0.0/0', description='required'
			),
		],
		tags=to_cfn_tags(props.tags, Name=props.prefix),
	)

	subnet_group = rds.CfnDBSubnetGroup(
		construct,
		'rds_subnet_group',
		db_subnet_group_name=prefixed_name(construct, props.prefix.lower(), max_length=255),
		db_subnet_group_description=f'Subnet group for {props.prefix}',
		subnet_ids=props.subnet_ids,
		tags=to_cfn_tags(props.tags),
	)

	master_password = rds_config.master_password
	if master_password is None:
		master_password = create_master_password_secret(construct, props.prefix, props.tags)

	cluster = rds.CfnDBCluster(
		construct,
		'rds_cluster',
		**rds_config.cluster_props,
		engine=rds_config.engine,
		master_username=rds_config.master_username,
		master_user_password=master_password,
		database_name=rds_config.database_name,
		port=rds_port,
		db_cluster_identifier=prefixed_name(construct, props.prefix.lower()),
		copy_tags_to_snapshot=True,
		vpc_security_group_ids=[security_group.attr_group_id],
		db_subnet_group_name=subnet_group.ref,
		tags=to_cfn_tags(props.tags),
	)
	apply_lifecycle(cluster, ignore_changes=['MasterUsername', 'MasterUserPassword'])

	NagSuppressions.add_resource_suppressions(
		cluster,
		[
			{'id': 'AwsSolutions-RDS6', 'reason': 'Applications authenticate with the credentials kept in Secrets Manager.'},
			{'id': 'AwsSolutions-RDS10', 'reason': 'Deletion protection is left to the cluster configuration.'},
			{'id': 'AwsSolutions-RDS11', 'reason': 'The cluster is only reachable from inside the VPC.'},
			{'id': 'AwsSolutions-RDS14', 'reason': 'Backtrack is left to the cluster configuration.'},
		],
	)

	secret_arn = create_rds_secret(
		construct,
		cluster,
		rds_port=rds_port,
		prefix=props.prefix,
		rds_config=rds_config,
		master_password=master_password,
		tags=props.tags,
	)

	return ApplicationRDSClusterResources(cluster=cluster, secret_arn=secret_arn)


def lookup_vpc_cidr_block(scope: Construct, vpc_id: str) -> str:
	"""
	Look up the CIDR block of a VPC by id.

	The lookup is a custom resource evaluated at deploy time, so synthesis
	does not need credentials or network access.

	Returns:
	    str: A token resolving to the VPC CIDR block
	"""
	describe_vpc = cr.AwsSdkCall(
		service='EC2',
		action='describeVpcs',
		parameters={'VpcIds': [vpc_id]},
		physical_resource_id=cr.PhysicalResourceId.of(vpc_id),
		output_paths=['Vpcs.0.CidrBlock'],
	)
	lookup = cr.AwsCustomResource(
		scope,
		'vpc',
		resource_type='Custom::VpcCidrLookup',
		on_create=describe_vpc,
		on_update=describe_vpc,
		policy=cr.AwsCustomResourcePolicy.from_sdk_calls(resources=cr.AwsCustomResourcePolicy.ANY_RESOURCE),
		install_latest_aws_sdk=False,
	)
	NagSuppressions.add_resource_suppressions(
		lookup,
		[{'id': 'AwsSolutions-IAM5', 'reason': 'ec2:DescribeVpcs does not support resource-level permissions.'}],
		apply_to_children=True,
	)
	return lookup.get_response_field('Vpcs.0.CidrBlock')


def resolve_rds_port(engine: str, port: Optional[int] = None) -> int:
	"""Return the explicit port, or the default port of the engine family."""
	if port is not None:
		return port
	rds_port = POSTGRESQL_PORT if 'postgresql' in engine else MYSQL_PORT
	logger.debug(f'Using default port {rds_port} for engine {engine}')
	return rds_port


def master_password_generator() -> secretsmanager.CfnSecret.GenerateSecretStringProperty:
	"""Settings for a bootstrap master password of 16 hexadecimal characters."""
	return secretsmanager.CfnSecret.GenerateSecretStringProperty(
		password_length=MASTER_PASSWORD_LENGTH,
		exclude_uppercase=True,
		exclude_punctuation=True,
		exclude_characters=NON_HEX_LOWERCASE,
		include_space=False,
	)


def create_master_password_secret(scope: Construct, prefix: str, tags: Dict[str, str]) -> str:
	"""
	Create the secret the bootstrap master password is generated into.

	Returns:
	    str: A dynamic reference resolving to the password at deploy time
	"""
	password_secret = secretsmanager.CfnSecret(
		scope,
		'rds_master_password',
		description=f'Bootstrap master password for {prefix}',
		generate_secret_string=master_password_generator(),
		tags=to_cfn_tags(tags),
	)
	NagSuppressions.add_resource_suppressions(
		password_secret,
		[{'id': 'AwsSolutions-SMG4', 'reason': 'The bootstrap password is rotated by hand with the connection secret.'}],
	)
	return SecretValue.secrets_manager(password_secret.ref).unsafe_unwrap()


def build_secret_payload(
	*,
	engine: str,
	host: str,
	username: str,
	password: str,
	dbname: Optional[str],
	port: int,
) -> Dict[str, Any]:
	"""
	Build the connection details stored in the cluster secret.

	A ready to use database_url is added for aurora-mysql clusters.
	"""
	payload = {
		'engine': engine,
		'host': host,
		'username': username,
		'password': password,
		'dbname': dbname,
		'port': port,
	}

	if engine == 'aurora-mysql':
		payload['database_url'] = f'mysql://{username}:{password}@{host}:{port}/{dbname}'

	return payload


def create_rds_secret(
	scope: Construct,
	cluster: rds.CfnDBCluster,
	*,
	rds_port: int,
	prefix: str,
	rds_config: ApplicationRDSClusterConfig,
	master_password: str,
	tags: Dict[str, str],
) -> str:
	"""
	Create the secret describing the cluster and its initial version.

	The secret is not rotated automatically. It exists so the credentials can
	be rotated by hand once the cluster is up.

	Args:
	    scope: The CDK construct scope
	    cluster: The cluster the secret describes
	    rds_port: Port the cluster listens on
	    prefix: Name prefix of the secret
	    rds_config: Cluster settings
	    master_password: The master password, or the dynamic reference to the generated one
	    tags: Tags for the secret

	Returns:
	    str: The ARN of the secret
	"""
	payload = build_secret_payload(
		engine=rds_config.engine,
		host=cluster.attr_endpoint_address,
		username=rds_config.master_username,
		password=master_password,
		dbname=rds_config.database_name,
		port=rds_port,
	)

	# The template value is the initial version only, later versions come from rotation
	secret = secretsmanager.CfnSecret(
		scope,
		'rds_secret',
		name=f'{prefix}/{cluster.ref}',
		description=f'Secret For {cluster.ref}',
		secret_string=Stack.of(scope).to_json_string(payload),
		tags=to_cfn_tags(tags),
	)
	secret.add_dependency(cluster)
	apply_lifecycle(secret, ignore_changes=['SecretString'])
	NagSuppressions.add_resource_suppressions(
		secret,
		[
			{'id': 'AwsSolutions-SMG4', 'reason': 'Credentials are rotated manually after the cluster is created.'},
		],
	)
	logger.info(f'Created secret for cluster {cluster.node.path}')

	return secret.ref
