#!/usr/bin/env python3
"""
Development server startup script for the gift CRM API
"""
import os
import sys
import django
from django.core.management import execute_from_command_line

def main():
    """Start the Django development server"""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'gift_crm.settings')

    project_dir = os.path.dirname(os.path.abspath(__file__))
    sys.path.insert(0, project_dir)

    django.setup()

    # Bring the schema up to date before serving.
    execute_from_command_line(['manage.py', 'migrate'])

    print("Starting gift CRM development server...")
    print("API available at: http://127.0.0.1:8000/api/")
    print("Press Ctrl+C to stop the server")
    print("-" * 50)

    execute_from_command_line(['manage.py', 'runserver', '127.0.0.1:8000'])

if __name__ == '__main__':
    main()
