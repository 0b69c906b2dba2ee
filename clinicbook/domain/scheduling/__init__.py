"""
Scheduling Domain

Turns a doctor's weekly availability and booking policy into bookable slots,
and owns the appointment lifecycle.

Structure:
```
clinicbook/domain/scheduling/
├── time_calculator.py  # Pure "HH:MM" / date helpers
├── availability.py     # Weekly rules -> concrete windows for a date
├── slots.py            # Slot generation, grouping
├── rules.py            # Book / cancel / reschedule policy checks
├── lifecycle.py        # Reserve-or-reject transaction, status workflow, sweeps
├── events.py           # Post-commit appointment events
├── errors.py           # Error taxonomy with HTTP status and code
├── schemas.py          # Enums, value objects, request/response models
├── service.py          # Dates, slots, next slot, stats
├── repository.py       # Database queries
└── router.py           # /scheduling endpoints
```
"""
