"""
Scheduling API Client
Talks to the host application's REST API: fetches the persisted schedule,
pushes newly generated assignments, and records regeneration audit events.

The core never calls this during a run; it is used before (load existing
assignments) and after (persist results, audit) a scheduling run.
"""

import logging
import time
from datetime import date
from typing import Any, Dict, Iterable, List, Union

import requests

from preceptor_scheduler.models import Assignment, parse_date

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


class SchedulingApiClient:
    """
    Client for the host scheduling application
    """

    def __init__(self, base_url: str, api_key: str):
        """
        Args:
            base_url: API root, e.g. https://scheduler.example.edu/api
            api_key: Bearer token
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')

        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json'
        })

    def get_assignments(
        self,
        start_date: Union[date, str],
        end_date: Union[date, str],
    ) -> List[Assignment]:
        """
        Retrieve persisted assignments in [start_date, end_date]

        Returns:
            Assignments in the order the API returned them
        """
        endpoint = f"{self.base_url}/schedules/assignments"
        params = {
            'startDate': str(start_date),
            'endDate': str(end_date),
        }

        logger.info(f"Fetching assignments from {start_date} to {end_date}")

        try:
            response = self.session.get(endpoint, params=params, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching assignments: {e}")
            raise

        assignments = [
            Assignment(
                student_id=row['student_id'],
                preceptor_id=row['preceptor_id'],
                clerkship_id=row['clerkship_id'],
                date=parse_date(row['date']),
                elective_id=row.get('elective_id'),
                site_id=row.get('site_id'),
            )
            for row in data
        ]
        logger.info(f"Retrieved {len(assignments)} assignments")
        return assignments

    def push_assignments(
        self,
        assignments: Iterable[Assignment],
        batch_size: int = 200,
        rate_limit_delay: float = 0.0,
    ) -> int:
        """
        Upload assignments in batches

        Returns:
            Number of assignments accepted by the API
        """
        endpoint = f"{self.base_url}/schedules/assignments"
        payload = [a.to_dict() for a in assignments]
        total = len(payload)
        accepted = 0

        logger.info(f"Uploading {total} assignments")

        for i in range(0, total, batch_size):
            batch = payload[i:i + batch_size]
            try:
                response = self.session.post(endpoint, json=batch, timeout=REQUEST_TIMEOUT)
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                logger.error(f"Error uploading assignments {i}-{i + len(batch) - 1}: {e}")
                raise
            accepted += len(batch)
            logger.info(f"Progress: {accepted}/{total}")
            if rate_limit_delay:
                time.sleep(rate_limit_delay)

        return accepted

    def post_audit_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Store one regeneration audit record."""
        endpoint = f"{self.base_url}/audit/regenerations"

        try:
            response = self.session.post(endpoint, json=record, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Error posting audit record {record.get('id')}: {e}")
            raise
