"""GraphQL documents for scope, repository and history traversal"""

REPOSITORY_FIELDS = """
    id
    name
    isInOrganization
    owner { login }
    defaultBranchRef {
      name
      target { __typename ... on Commit { oid } }
    }
"""

VIEWER_ORGANIZATIONS = """
query ViewerOrganizations($first: Int!, $after: String) {
  viewer {
    login
    organizations(first: $first, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes { login }
    }
  }
  rateLimit { cost remaining limit resetAt nodeCount }
}
"""

ORGANIZATION_REPOSITORIES = f"""
query OrganizationRepositories($login: String!, $first: Int!, $after: String) {{
  organization(login: $login) {{
    repositories(first: $first, after: $after, orderBy: {{field: NAME, direction: ASC}}) {{
      pageInfo {{ hasNextPage endCursor }}
      nodes {{ {REPOSITORY_FIELDS} }}
    }}
  }}
  rateLimit {{ cost remaining limit resetAt nodeCount }}
}}
"""

VIEWER_REPOSITORIES = f"""
query ViewerRepositories($first: Int!, $after: String) {{
  viewer {{
    login
    repositories(first: $first, after: $after, ownerAffiliations: [OWNER], orderBy: {{field: NAME, direction: ASC}}) {{
      pageInfo {{ hasNextPage endCursor }}
      nodes {{ {REPOSITORY_FIELDS} }}
    }}
  }}
  rateLimit {{ cost remaining limit resetAt nodeCount }}
}}
"""

# History is returned newest first; `since` bounds it server-side
COMMIT_HISTORY = """
query CommitHistory($owner: String!, $name: String!, $first: Int!, $after: String, $since: GitTimestamp) {
  repository(owner: $owner, name: $name) {
    defaultBranchRef {
      target {
        __typename
        ... on Commit {
          history(first: $first, after: $after, since: $since) {
            pageInfo { hasNextPage endCursor }
            nodes {
              id
              committedDate
              additions
              deletions
              author { name }
            }
          }
        }
      }
    }
  }
  rateLimit { cost remaining limit resetAt nodeCount }
}
"""

REPOSITORY_ISSUES = """
query RepositoryIssues($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    issues(first: $first, after: $after, orderBy: {field: CREATED_AT, direction: ASC}) {
      pageInfo { hasNextPage endCursor }
      nodes { id state createdAt closedAt }
    }
  }
  rateLimit { cost remaining limit resetAt nodeCount }
}
"""

REPOSITORY_PULL_REQUESTS = """
query RepositoryPullRequests($owner: String!, $name: String!, $first: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    pullRequests(first: $first, after: $after, orderBy: {field: CREATED_AT, direction: ASC}) {
      pageInfo { hasNextPage endCursor }
      nodes { id state createdAt closedAt }
    }
  }
  rateLimit { cost remaining limit resetAt nodeCount }
}
"""
