"""
Serverless entry point for the Facility Helpdesk API
"""
import os

# The in-process sweep scheduler cannot run in a serverless function;
# the sweep is triggered through POST /helpdesk/escalations/process instead.
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("ESCALATION_SWEEP_INTERVAL", "0")

from mangum import Mangum

from facility_helpdesk.main import app

handler = Mangum(app, lifespan="auto")
