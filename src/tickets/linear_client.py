"""
Linear issue tracker client.

Talks to the Linear GraphQL API over plain HTTP POSTs. Every call raises
IssueTrackerError on a transport failure, a non-200 status or a GraphQL
error in the response body.
"""

from typing import Any, Dict, List, Optional
import logging

import requests

from src.config.settings import Settings
from src.models.errors import IssueTrackerError
from src.models.schemas import IssueRecord

logger = logging.getLogger(__name__)


CREATE_ISSUE_MUTATION = """
mutation IssueCreate($input: IssueCreateInput!) {
    issueCreate(input: $input) {
        success
        issue { id title url priority }
    }
}
"""

UPDATE_ISSUE_MUTATION = """
mutation IssueUpdate($issueId: String!, $input: IssueUpdateInput!) {
    issueUpdate(id: $issueId, input: $input) {
        success
        issue { id priority }
    }
}
"""

CREATE_COMMENT_MUTATION = """
mutation CommentCreate($issueId: String!, $body: String!) {
    commentCreate(input: {issueId: $issueId, body: $body}) {
        success
        comment { id }
    }
}
"""

LIST_ISSUES_QUERY = """
query Issues($first: Int!, $after: String) {
    issues(first: $first, after: $after, orderBy: updatedAt) {
        nodes {
            id
            title
            description
            priority
            url
            state { name }
        }
        pageInfo { hasNextPage endCursor }
    }
}
"""


class LinearClient:
    """Minimal GraphQL client for Linear issues and comments."""

    def __init__(self, config: Settings, session: Optional[requests.Session] = None):
        if not config.linear_api_key:
            raise IssueTrackerError("linear_api_key is not configured")

        self.config = config
        self.endpoint = config.linear_api_url
        self.team_id = config.linear_team_id
        self.page_size = config.linear_page_size
        self.timeout = config.linear_timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": config.linear_api_key,
            "Content-Type": "application/json",
        })

    def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a GraphQL operation and return its `data` object.

        Raises:
            IssueTrackerError: HTTP failure or GraphQL errors in the response
        """
        try:
            response = self.session.post(
                self.endpoint,
                json={"query": query, "variables": variables or {}},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise IssueTrackerError(f"failed to execute request: {e}") from e

        if response.status_code != 200:
            raise IssueTrackerError(
                f"GraphQL request failed with status {response.status_code}: {response.text[:500]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise IssueTrackerError(f"failed to decode response: {e}") from e

        errors = body.get("errors")
        if errors:
            raise IssueTrackerError(f"GraphQL error: {errors[0].get('message', 'unknown error')}")

        return body.get("data") or {}

    def create_issue(self, title: str, description: str, priority: Optional[int] = None) -> IssueRecord:
        """Create an issue in the configured team."""
        if not self.team_id:
            raise IssueTrackerError("linear_team_id is not configured")

        issue_input = {"teamId": self.team_id, "title": title, "description": description}
        if priority is not None:
            issue_input["priority"] = priority

        data = self.execute(CREATE_ISSUE_MUTATION, {"input": issue_input})
        result = data.get("issueCreate") or {}
        if not result.get("success"):
            raise IssueTrackerError(f"issue creation was not successful for '{title}'")

        issue = result["issue"]
        logger.info(f"Created issue {issue['id']}: {title}")
        return IssueRecord(
            issue_id=issue["id"],
            title=issue.get("title", title),
            description=description,
            priority=issue.get("priority", priority),
            url=issue.get("url"),
        )

    def update_issue(self, issue_id: str, priority: Optional[int] = None,
                     description: Optional[str] = None) -> None:
        """Update the priority and/or description of an issue."""
        issue_input = {}
        if priority is not None:
            issue_input["priority"] = priority
        if description is not None:
            issue_input["description"] = description
        if not issue_input:
            return

        data = self.execute(UPDATE_ISSUE_MUTATION, {"issueId": issue_id, "input": issue_input})
        if not (data.get("issueUpdate") or {}).get("success"):
            raise IssueTrackerError(f"update of issue {issue_id} was not successful")

    def add_comment(self, issue_id: str, body: str) -> None:
        data = self.execute(CREATE_COMMENT_MUTATION, {"issueId": issue_id, "body": body})
        if not (data.get("commentCreate") or {}).get("success"):
            raise IssueTrackerError(f"comment on issue {issue_id} was not successful")

    def list_issues(self, max_issues: Optional[int] = None) -> List[IssueRecord]:
        """Fetch issues, most recently updated first, following pagination cursors."""
        issues: List[IssueRecord] = []
        after = None

        while True:
            data = self.execute(LIST_ISSUES_QUERY, {"first": self.page_size, "after": after})
            page = data.get("issues") or {}

            for node in page.get("nodes", []):
                issues.append(IssueRecord(
                    issue_id=node["id"],
                    title=node.get("title", ""),
                    description=node.get("description"),
                    state=(node.get("state") or {}).get("name"),
                    priority=node.get("priority"),
                    url=node.get("url"),
                ))
                if max_issues is not None and len(issues) >= max_issues:
                    return issues

            page_info = page.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            after = page_info.get("endCursor")

        logger.info(f"Fetched {len(issues)} issues from Linear")
        return issues

    def close(self) -> None:
        self.session.close()
