#!/usr/bin/env python3
"""
Main CDK application for the application environment

This module serves as the entry point for deploying an application environment.
It reads the settings file, builds the properties of every load balancer,
Aurora cluster and DynamoDB table it lists, and creates the environment stack.
"""

import logging
import os
import cdk_nag
import aws_cdk as cdk

from application_constructs.environment_stack import ApplicationEnvironmentStack
from application_constructs.utils.config_utils import get_config, environment_props_from_settings

logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO'), format='%(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)

settings = get_config(os.getenv('SETTINGS_FILE', './configuration/settings.json'))
environment_props = environment_props_from_settings(settings)
environment = settings.get('environment', {})

app = cdk.App()

env = cdk.Environment(
	account=environment.get('account') or os.getenv('CDK_DEFAULT_ACCOUNT'),
	region=environment.get('region') or os.getenv('CDK_DEFAULT_REGION'),
)

ApplicationEnvironmentStack(
	app,
	f'{environment_props.stack_name}-ApplicationEnvironment',
	props=environment_props,
	env=env,
)
logger.info(f'Synthesizing {environment_props.stack_name} for region {env.region}')

# Adding cdk-nag checks
cdk.Aspects.of(app).add(cdk_nag.AwsSolutionsChecks())

app.synth()
