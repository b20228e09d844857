"""Global test configuration: every test runs in testing mode."""

import os

# Must be set before canteen.main is imported so the lifespan skips background tasks.
os.environ["TESTING"] = "1"
