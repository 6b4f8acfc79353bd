"""
keylime_provisioner package

Installs a pre-built keylime agent as a systemd service:
- __main__.py: command line entry point
- provisioner.py: the installation sequence
- systemd_manager.py: unit rendering, installation and enablement
- accounts.py: service account lookup and creation
- agent_config.py: privilege-drop setting in the agent configuration
- config.py / logging.py: installer configuration and logging
"""

__version__ = "0.1.0"
