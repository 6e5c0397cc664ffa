# -*- coding: utf-8 -*-
# ===================================================================
# 🚗 Dealership storefront – CRM webhooks & vehicle image ingestion
# Entry point: `gunicorn "main:create_app()"` or `python main.py`
# ===================================================================

import os

from dealership.factory import create_app
from dealership.extensions import db
from dealership.models import Vehicle, VehicleImage

__all__ = ["create_app", "db", "Vehicle", "VehicleImage"]


if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get('PORT', 5001))
    debug = os.environ.get('FLASK_DEBUG', '').lower() in ('1', 'true', 'yes')
    app.run(host='0.0.0.0', port=port, debug=debug)
