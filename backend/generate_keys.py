"""Write a fresh TOKEN_ENCRYPTION_KEY into .env, starting from .env.template."""

import os

from cryptography.fernet import Fernet

fernet_key = Fernet.generate_key().decode()
print(f"Generated TOKEN_ENCRYPTION_KEY: {fernet_key}")

template_path = ".env.template"
env_path = ".env"

if os.path.exists(template_path):
    with open(template_path, "r") as f:
        lines = f.read().splitlines()

    new_lines = [
        f"TOKEN_ENCRYPTION_KEY={fernet_key}" if line.startswith("TOKEN_ENCRYPTION_KEY=") else line
        for line in lines
    ]

    with open(env_path, "w") as f:
        f.write("\n".join(new_lines) + "\n")

    print(f"Successfully wrote to {env_path}")
else:
    print(f"Error: {template_path} not found. Please ensure it exists.")
