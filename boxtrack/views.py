from django.urls import reverse
from rest_framework.views import APIView
from rest_framework.response import Response

# (payload key, url name)
_ENDPOINTS = (
    ("admin", "admin:index"),
    ("token_obtain", "token_obtain_pair"),
    ("token_refresh", "token_refresh"),
    ("schema", "schema"),
    ("swagger", "swagger-ui"),
    ("redoc", "redoc"),
    ("health", "health"),
    ("jobs", "job-list"),
    ("workflow", "workflow-definition"),
    ("my_access", "my-access"),
    ("held_machines", "held-machines"),
    ("assign_machines", "assign-machines"),
    ("remove_machines", "remove-machines"),
)


class ApiHomeView(APIView):
    authentication_classes = []
    permission_classes = []

    def get(self, request):
        return Response(
            {
                "message": "boxtrack shop-floor API",
                "endpoints": {key: reverse(name) for key, name in _ENDPOINTS},
            }
        )
