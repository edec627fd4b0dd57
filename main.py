"""Main entry point for pr-comments."""

from prcomments.cli import main

if __name__ == "__main__":
    main()
