"""Dagster job definitions for asset materialization."""

from dagster import define_asset_job

roi_job = define_asset_job(name="roi_job", selection=["roi"])
