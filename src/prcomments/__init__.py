"""pr-comments: fetch GitHub PR review comments and group them into threads."""
