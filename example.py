# posthog-core example
#
# Captures a few events, identifies a user and reads feature flags.
#
# Setup:
# 1. Export POSTHOG_PROJECT_API_KEY (and optionally POSTHOG_HOST)
# 2. Run this script

import os

from posthog_core import Client, Config

project_key = os.getenv("POSTHOG_PROJECT_API_KEY", "")
host = os.getenv("POSTHOG_HOST", "http://localhost:8000")

if not project_key:
    print("❌ Missing PostHog credentials!")
    print("   Please set the POSTHOG_PROJECT_API_KEY environment variable")
    exit(1)

client = Client(
    Config(
        api_key=project_key,
        host=host,
        debug=True,
        flush_interval_seconds=5,
    )
).setup()

print("📊 Capturing events...")
client.capture("example started", {"source": "example.py"})
client.screen("Dashboard", {"tab": "overview"})

client.register("plan", "enterprise")
client.identify(
    "example-user", {"email": "example@posthog.com"}, {"first_seen": "example"}
)
client.group("company", "posthog", {"name": "PostHog"})
client.capture("example identified")

print("🏁 Reloading feature flags...")
if client.reload_feature_flags().result(timeout=10):
    print("   flags:", client.get_all_feature_flags())
else:
    print("   could not load flags, using cached values")

print("   beta-feature enabled:", client.is_feature_enabled("beta-feature"))
client.override_feature_flags({"beta-feature": True})
print("   beta-feature after override:", client.get_feature_flag_result("beta-feature"))

try:
    raise RuntimeError("example failure")
except RuntimeError as e:
    client.capture_exception(e)

print("✅ Flushing and shutting down...")
client.close()
