"""AppTime usage aggregation, ranking and reward settlement pipeline."""
